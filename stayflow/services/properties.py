from typing import Any

from stayflow.core.fields import PROPERTY_FIELDS, ROOM_TYPE_FIELDS, ROOM_UNIT_FIELDS, map_fields
from stayflow.integrations.supabase_client import (
    first_row,
    get_supabase_client,
    rows_of,
    storage_failure,
    timed_execute,
)

PROPERTY_LIST_SELECT = """
    *,
    room_types(id,name,max_guests,base_price,currency,is_active)
"""

PROPERTY_STATS_SELECT = """
    *,
    room_types(
        id,
        name,
        is_active,
        room_units(
            id,
            unit_number,
            is_active,
            reservations(id,status,check_in_date,check_out_date,total_amount)
        )
    )
"""

ROOM_TYPE_WITH_UNITS_SELECT = """
    *,
    room_units(*)
"""


def list_properties(*, owner_id: str | None = None, include_room_types: bool = True) -> list[dict[str, Any]]:
    try:
        query = (
            get_supabase_client()
            .table("properties")
            .select(PROPERTY_LIST_SELECT if include_room_types else "*")
            .eq("is_active", True)
        )
        if owner_id:
            query = query.eq("owner_id", owner_id)
        response = timed_execute(
            "db.properties.list",
            lambda: query.order("created_at", desc=True).execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch properties", exc) from exc

    rows = rows_of(response)
    for row in rows:
        if "room_types" in row:
            row["room_types"] = [item for item in row["room_types"] or [] if item.get("is_active", True)]
    return rows


def get_property(*, property_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("properties")
            .select(PROPERTY_LIST_SELECT)
            .eq("id", property_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch property", exc) from exc
    return first_row(response)


def find_property_by_beds24_id(beds24_property_id: Any) -> dict[str, Any] | None:
    if beds24_property_id in (None, ""):
        return None
    try:
        response = (
            get_supabase_client()
            .table("properties")
            .select("*")
            .eq("beds24_property_id", beds24_property_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("find property by Beds24 id", exc) from exc
    return first_row(response)


def create_property(*, payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(payload, PROPERTY_FIELDS, defaults={"property_type": "apartment", "is_active": True})
    try:
        response = get_supabase_client().table("properties").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create property", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create property", RuntimeError("insert returned no rows"))
    return created


def update_property(*, property_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, PROPERTY_FIELDS)
    if not updates:
        return None
    try:
        response = get_supabase_client().table("properties").update(updates).eq("id", property_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update property", exc) from exc
    return first_row(response)


def delete_property(*, property_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("properties")
            .update({"is_active": False})
            .eq("id", property_id)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete property", exc) from exc
    return first_row(response)


def _property_stats(room_types: list[dict[str, Any]]) -> dict[str, Any]:
    room_types = [item for item in room_types if item.get("is_active", True)]
    units = [
        unit
        for room_type in room_types
        for unit in room_type.get("room_units") or []
        if unit.get("is_active", True)
    ]
    reservations = [reservation for unit in units for reservation in unit.get("reservations") or []]
    completed = [item for item in reservations if item.get("status") in {"completed", "checked_out"}]
    revenue = sum(float(item.get("total_amount") or 0) for item in completed)
    # Rough 30-day occupancy, capped.
    occupancy = (len(completed) / (len(units) * 30)) * 100 if units else 0.0
    return {
        "total_room_types": len(room_types),
        "total_room_units": len(units),
        "total_reservations": len(reservations),
        "completed_reservations": len(completed),
        "total_revenue": round(revenue, 2),
        "occupancy_rate": round(min(occupancy, 100.0), 2),
    }


def list_properties_with_stats(*, owner_id: str | None = None) -> list[dict[str, Any]]:
    try:
        query = get_supabase_client().table("properties").select(PROPERTY_STATS_SELECT).eq("is_active", True)
        if owner_id:
            query = query.eq("owner_id", owner_id)
        response = timed_execute(
            "db.properties.list_with_stats",
            lambda: query.order("created_at", desc=True).execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch properties with stats", exc) from exc

    results = []
    for row in rows_of(response):
        room_types = row.pop("room_types", None) or []
        results.append({**row, "stats": _property_stats(room_types)})
    return results


def list_room_types(*, property_id: str, with_units: bool = False) -> list[dict[str, Any]]:
    try:
        response = (
            get_supabase_client()
            .table("room_types")
            .select(ROOM_TYPE_WITH_UNITS_SELECT if with_units else "*")
            .eq("property_id", property_id)
            .eq("is_active", True)
            .order("created_at", desc=True)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch room types", exc) from exc
    return rows_of(response)


def get_room_type(*, room_type_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("room_types")
            .select(ROOM_TYPE_WITH_UNITS_SELECT)
            .eq("id", room_type_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch room type", exc) from exc
    return first_row(response)


def find_room_type_by_beds24_id(beds24_room_type_id: Any) -> dict[str, Any] | None:
    if beds24_room_type_id in (None, ""):
        return None
    try:
        response = (
            get_supabase_client()
            .table("room_types")
            .select("*")
            .eq("beds24_roomtype_id", beds24_room_type_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("find room type by Beds24 id", exc) from exc
    return first_row(response)


def create_room_type(*, property_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(
        payload,
        ROOM_TYPE_FIELDS,
        defaults={"max_guests": 2, "currency": "USD", "is_active": True},
    )
    row["property_id"] = property_id
    try:
        response = get_supabase_client().table("room_types").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create room type", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create room type", RuntimeError("insert returned no rows"))
    return created


def update_room_type(*, room_type_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, ROOM_TYPE_FIELDS)
    updates.pop("property_id", None)
    if not updates:
        return None
    try:
        response = get_supabase_client().table("room_types").update(updates).eq("id", room_type_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update room type", exc) from exc
    return first_row(response)


def delete_room_type(*, room_type_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("room_types")
            .update({"is_active": False})
            .eq("id", room_type_id)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete room type", exc) from exc
    return first_row(response)


def list_room_units(*, room_type_id: str) -> list[dict[str, Any]]:
    try:
        response = (
            get_supabase_client()
            .table("room_units")
            .select("*")
            .eq("room_type_id", room_type_id)
            .eq("is_active", True)
            .order("unit_number")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch room units", exc) from exc
    return rows_of(response)


def get_room_unit(*, room_unit_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("room_units")
            .select("*, room_types(*)")
            .eq("id", room_unit_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch room unit", exc) from exc
    return first_row(response)


def find_room_unit_by_beds24_id(beds24_unit_id: Any, *, room_type_id: str | None = None) -> dict[str, Any] | None:
    if beds24_unit_id in (None, ""):
        return None
    try:
        query = (
            get_supabase_client()
            .table("room_units")
            .select("*")
            .eq("beds24_unit_id", beds24_unit_id)
            .eq("is_active", True)
        )
        if room_type_id:
            query = query.eq("room_type_id", room_type_id)
        response = query.limit(1).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("find room unit by Beds24 id", exc) from exc
    return first_row(response)


def create_room_unit(*, room_type_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(payload, ROOM_UNIT_FIELDS, defaults={"is_active": True})
    row["room_type_id"] = room_type_id
    try:
        response = get_supabase_client().table("room_units").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create room unit", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create room unit", RuntimeError("insert returned no rows"))
    return created


def update_room_unit(*, room_unit_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, ROOM_UNIT_FIELDS)
    updates.pop("room_type_id", None)
    if not updates:
        return None
    try:
        response = get_supabase_client().table("room_units").update(updates).eq("id", room_unit_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update room unit", exc) from exc
    return first_row(response)


def delete_room_unit(*, room_unit_id: str) -> dict[str, Any] | None:
    try:
        response = get_supabase_client().table("room_units").delete().eq("id", room_unit_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete room unit", exc) from exc
    return first_row(response)
