from typing import Any

from stayflow.integrations.supabase_client import first_row, get_supabase_client, rows_of, storage_failure

SETTLED_PAYMENT_STATUSES = {"paid", "exempted"}

RESERVATION_ADDON_SELECT = """
    *,
    guest_services(
        service_key,
        name,
        description,
        price,
        currency,
        is_mandatory,
        access_time_override_hours,
        departure_time_override_hours
    )
"""


def list_guest_services() -> list[dict[str, Any]]:
    try:
        response = (
            get_supabase_client()
            .table("guest_services")
            .select("*")
            .eq("is_active", True)
            .order("service_key")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch guest services", exc) from exc
    return rows_of(response)


def list_reservation_addons(*, reservation_id: str, admin_enabled_only: bool = False) -> list[dict[str, Any]]:
    try:
        query = (
            get_supabase_client()
            .table("reservation_addons")
            .select(RESERVATION_ADDON_SELECT)
            .eq("reservation_id", reservation_id)
        )
        if admin_enabled_only:
            query = query.eq("admin_enabled", True)
        response = query.order("created_at").execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservation services", exc) from exc
    return rows_of(response)


def payment_status(addon: dict[str, Any]) -> str:
    if addon.get("is_tax_exempted"):
        return "exempted"
    return str(addon.get("purchase_status") or "available")


def guest_service_view(addon: dict[str, Any]) -> dict[str, Any]:
    service = addon.get("guest_services") or {}
    return {
        "id": addon.get("id"),
        "service_id": addon.get("service_id"),
        "service_type": service.get("service_key"),
        "name": service.get("name"),
        "description": service.get("description"),
        "price": addon.get("calculated_amount") or service.get("price"),
        "currency": service.get("currency"),
        "is_mandatory": bool(service.get("is_mandatory")),
        "admin_enabled": bool(addon.get("admin_enabled")),
        "payment_status": payment_status(addon),
        "access_time_override": addon.get("access_time_override"),
        "departure_time_override": addon.get("departure_time_override"),
    }


def mandatory_services(services: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [service for service in services if service.get("is_mandatory")]


def all_mandatory_settled(services: list[dict[str, Any]]) -> bool:
    return all(service.get("payment_status") in SETTLED_PAYMENT_STATUSES for service in mandatory_services(services))


def effective_times(
    property_row: dict[str, Any] | None,
    services: list[dict[str, Any]],
    *,
    default_access: str,
    default_departure: str,
) -> dict[str, str]:
    """Property access/departure times, overridden by paid add-ons in order."""
    property_row = property_row or {}
    access_time = property_row.get("access_time") or default_access
    departure_time = property_row.get("departure_time") or default_departure
    for service in services:
        if service.get("payment_status") != "paid":
            continue
        if service.get("access_time_override"):
            access_time = service["access_time_override"]
        if service.get("departure_time_override"):
            departure_time = service["departure_time_override"]
    return {"access_time": str(access_time), "departure_time": str(departure_time)}


def set_service_enabled(*, reservation_id: str, service_key: str, enabled: bool) -> dict[str, Any] | None:
    """Toggle an add-on for a reservation. Paid add-ons are never disabled."""
    client = get_supabase_client()
    try:
        service = first_row(
            client.table("guest_services").select("id").eq("service_key", service_key).limit(1).execute()
        )
        if not service:
            return None

        existing = first_row(
            client.table("reservation_addons")
            .select("*")
            .eq("reservation_id", reservation_id)
            .eq("service_id", service["id"])
            .limit(1)
            .execute()
        )
        if existing and not enabled and existing.get("purchase_status") == "paid":
            return existing

        row = {
            "reservation_id": reservation_id,
            "service_id": service["id"],
            "admin_enabled": enabled,
        }
        if not existing:
            row["purchase_status"] = "available"
        response = client.table("reservation_addons").upsert(row, on_conflict="reservation_id,service_id").execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update reservation service", exc) from exc
    return first_row(response)
