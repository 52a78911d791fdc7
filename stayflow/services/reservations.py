import logging
from datetime import datetime, timezone
from typing import Any

from stayflow.core.config import settings
from stayflow.core.fields import GUEST_CHECKIN_FIELDS, RESERVATION_FIELDS, map_fields
from stayflow.core.status import canonical_reservation_status
from stayflow.core.timeutil import local_today, parse_date
from stayflow.integrations.supabase_client import (
    first_row,
    get_supabase_client,
    rows_of,
    storage_failure,
    timed_execute,
)

logger = logging.getLogger(__name__)

RESERVATION_DETAILS_SELECT = """
    id,
    beds24_booking_id,
    property_id,
    room_type_id,
    room_unit_id,
    booking_name,
    booking_firstname,
    booking_lastname,
    booking_email,
    booking_phone,
    check_in_date,
    check_out_date,
    num_guests,
    status,
    admin_verified,
    checkin_submitted_at,
    property_name,
    room_type_name,
    unit_number,
    guest_firstname,
    guest_lastname,
    guest_contact,
    guest_mail,
    total_amount,
    currency,
    booking_source,
    special_requests,
    created_at
"""

RESERVATION_BASIC_SELECT = """
    *,
    properties(name),
    room_types(name),
    room_units(unit_number)
"""

RESERVATION_SORT_COLUMNS = {"check_in_date", "check_out_date", "created_at", "booking_name", "status"}

# Changing any of these reschedules automated messages.
SCHEDULE_FIELDS = ("check_in_date", "check_out_date", "check_in_time", "check_out_time")


def _sort_column(sort_by: str | None) -> str:
    return sort_by if sort_by in RESERVATION_SORT_COLUMNS else "check_in_date"


def _apply_filters(query, filters: dict[str, Any]):
    if filters.get("property_id"):
        query = query.eq("property_id", filters["property_id"])
    if filters.get("property_ids") is not None:
        query = query.in_("property_id", list(filters["property_ids"]))
    if filters.get("room_type_id"):
        query = query.eq("room_type_id", filters["room_type_id"])
    if filters.get("status"):
        query = query.eq("status", filters["status"])
    elif not filters.get("include_cancelled"):
        query = query.neq("status", "cancelled")
    if filters.get("check_in_date"):
        query = query.eq("check_in_date", filters["check_in_date"])
    else:
        if filters.get("check_in_from"):
            query = query.gte("check_in_date", filters["check_in_from"])
        if filters.get("check_in_to"):
            query = query.lte("check_in_date", filters["check_in_to"])
    return query


def _flatten_basic_row(row: dict[str, Any]) -> dict[str, Any]:
    flattened = dict(row)
    flattened["property_name"] = (row.get("properties") or {}).get("name")
    flattened["room_type_name"] = (row.get("room_types") or {}).get("name")
    flattened["unit_number"] = (row.get("room_units") or {}).get("unit_number")
    for key in ("properties", "room_types", "room_units"):
        flattened.pop(key, None)
    return flattened


def list_reservations(
    *,
    filters: dict[str, Any] | None = None,
    limit: int = 50,
    offset: int = 0,
    sort_by: str | None = None,
    sort_dir: str = "desc",
) -> tuple[list[dict[str, Any]], int]:
    filters = filters or {}
    if filters.get("property_ids") == []:
        return [], 0
    client = get_supabase_client()
    sort_column = _sort_column(sort_by)
    descending = str(sort_dir).lower() != "asc"

    try:
        query = _apply_filters(
            client.table("reservations_details").select(RESERVATION_DETAILS_SELECT, count="exact"),
            filters,
        )
        response = timed_execute(
            "db.reservations.list.details",
            lambda: query.order(sort_column, desc=descending).range(offset, offset + limit - 1).execute(),
        )
        return rows_of(response), int(response.count or 0)
    except Exception as exc:  # noqa: BLE001
        logger.warning("reservations_details view unavailable, using base table: %s", exc)

    try:
        query = _apply_filters(
            client.table("reservations").select(RESERVATION_BASIC_SELECT, count="exact"),
            filters,
        )
        response = timed_execute(
            "db.reservations.list.basic",
            lambda: query.order(sort_column, desc=descending).range(offset, offset + limit - 1).execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservations", exc) from exc
    return [_flatten_basic_row(row) for row in rows_of(response)], int(response.count or 0)


def get_reservation(*, reservation_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("reservations")
            .select(RESERVATION_BASIC_SELECT)
            .eq("id", reservation_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservation", exc) from exc
    row = first_row(response)
    return _flatten_basic_row(row) if row else None


def get_reservation_by_beds24_id(beds24_booking_id: Any) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("reservations")
            .select("*")
            .eq("beds24_booking_id", str(beds24_booking_id))
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservation", exc) from exc
    return first_row(response)


def get_reservation_by_token(check_in_token: str) -> dict[str, Any] | None:
    token = str(check_in_token or "").strip()
    if not token:
        return None
    candidates: list[Any] = [token]
    if token.isdigit():
        candidates.append(int(token))

    client = get_supabase_client()
    try:
        for candidate in candidates:
            response = (
                client.table("reservations")
                .select("*")
                .eq("check_in_token", candidate)
                .limit(1)
                .execute()
            )
            row = first_row(response)
            if row:
                return row
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservation by token", exc) from exc
    return None


def build_reservation_row(payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(payload, RESERVATION_FIELDS)
    if not row.get("beds24_booking_id"):
        row["beds24_booking_id"] = f"MANUAL-{int(datetime.now(timezone.utc).timestamp() * 1000)}"
    if not row.get("booking_name"):
        name = " ".join(part for part in (row.get("booking_firstname"), row.get("booking_lastname")) if part)
        if name:
            row["booking_name"] = name
    row.setdefault("num_adults", 1)
    row.setdefault("num_children", 0)
    row.setdefault("num_guests", (row.get("num_adults") or 1) + (row.get("num_children") or 0))
    row["currency"] = row.get("currency") or settings.default_currency
    row["status"] = canonical_reservation_status(row.get("status"))
    return {key: value for key, value in row.items() if value not in (None, "")}


def create_reservation(*, payload: dict[str, Any]) -> dict[str, Any]:
    row = build_reservation_row(payload)
    try:
        response = get_supabase_client().table("reservations").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create reservation", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create reservation", RuntimeError("insert returned no rows"))
    logger.info("Reservation created: id=%s beds24_booking_id=%s", created.get("id"), created.get("beds24_booking_id"))
    return created


def update_reservation(*, reservation_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, RESERVATION_FIELDS)
    if "status" in updates:
        updates["status"] = canonical_reservation_status(updates["status"])
    if not updates:
        return None
    try:
        response = get_supabase_client().table("reservations").update(updates).eq("id", reservation_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update reservation", exc) from exc
    return first_row(response)


def update_reservation_status(*, reservation_id: str, status: str) -> dict[str, Any] | None:
    return update_reservation(reservation_id=reservation_id, payload={"status": status})


def schedule_fields_changed(before: dict[str, Any], after: dict[str, Any]) -> bool:
    return any(str(before.get(key) or "") != str(after.get(key) or "") for key in SCHEDULE_FIELDS)


def upsert_reservation_from_booking(payload: dict[str, Any]) -> tuple[dict[str, Any], str, dict[str, Any] | None]:
    """Create or update the reservation keyed by ``beds24BookingId``.

    Returns ``(row, action, previous)`` where ``action`` is ``created`` or
    ``updated`` and ``previous`` is the row before the update.
    """
    booking_id = payload.get("beds24BookingId")
    if not booking_id:
        raise ValueError("beds24BookingId is required for booking upserts.")

    existing = get_reservation_by_beds24_id(booking_id)
    if existing:
        updates = {key: value for key, value in payload.items() if key != "beds24BookingId" and value is not None}
        updated = update_reservation(reservation_id=existing["id"], payload=updates)
        return (updated or existing), "updated", existing

    try:
        return create_reservation(payload=payload), "created", None
    except RuntimeError:
        # A concurrent delivery may have inserted the same booking first.
        existing = get_reservation_by_beds24_id(booking_id)
        if not existing:
            raise
        updated = update_reservation(reservation_id=existing["id"], payload=payload)
        return (updated or existing), "updated", existing


def list_reservation_guests(*, reservation_id: str) -> list[dict[str, Any]]:
    try:
        response = (
            get_supabase_client()
            .table("reservation_guests")
            .select("*")
            .eq("reservation_id", reservation_id)
            .order("guest_number")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservation guests", exc) from exc
    return rows_of(response)


def build_guest_row(*, reservation_id: str, guest_number: int, payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(payload, GUEST_CHECKIN_FIELDS)
    row = {key: (None if value == "" else value) for key, value in row.items()}
    if isinstance(row.get("agreement_accepted"), str):
        row["agreement_accepted"] = row["agreement_accepted"].lower() == "true"
    row.update(
        {
            "reservation_id": reservation_id,
            "guest_number": guest_number,
            "is_primary_guest": guest_number == 1,
            "checkin_submitted_at": payload.get("submittedAt") or datetime.now(timezone.utc).isoformat(),
        }
    )
    return row


def submit_guest_checkin(*, reservation_id: str, guest_number: int, payload: dict[str, Any]) -> dict[str, Any]:
    row = build_guest_row(reservation_id=reservation_id, guest_number=guest_number, payload=payload)
    try:
        response = (
            get_supabase_client()
            .table("reservation_guests")
            .upsert(row, on_conflict="reservation_id,guest_number")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("save guest check-in", exc) from exc

    saved = first_row(response)
    if not saved:
        raise storage_failure("save guest check-in", RuntimeError("upsert returned no rows"))
    return saved


def completion_status(reservation: dict[str, Any], guests: list[dict[str, Any]]) -> dict[str, Any]:
    required = int(reservation.get("num_guests") or 1)
    completed = sum(1 for guest in guests if guest.get("checkin_submitted_at"))
    return {
        "is_complete": completed >= required,
        "required_guests": required,
        "completed_guests": completed,
        "remaining_guests": max(0, required - completed),
    }


def mark_access_read(*, reservation_id: str) -> None:
    try:
        get_supabase_client().table("reservations").update({"access_read": True}).eq("id", reservation_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update access read", exc) from exc


def _count(query) -> int:
    return int(query.execute().count or 0)


def today_dashboard_stats(*, property_ids: list[str] | None = None) -> dict[str, int]:
    keys = ("today_arrivals", "today_departures", "in_house_guests", "pending_today_checkins")
    if property_ids == []:
        return dict.fromkeys(keys, 0)
    today = local_today().isoformat()
    client = get_supabase_client()

    def base():
        query = client.table("reservations").select("id", count="exact").neq("status", "cancelled")
        if property_ids is not None:
            query = query.in_("property_id", property_ids)
        return query

    try:
        return {
            "today_arrivals": _count(base().eq("check_in_date", today)),
            "today_departures": _count(base().eq("check_out_date", today)),
            "in_house_guests": _count(base().lte("check_in_date", today).gt("check_out_date", today)),
            "pending_today_checkins": _count(
                base().eq("check_in_date", today).is_("checkin_submitted_at", "null")
            ),
        }
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch dashboard stats", exc) from exc


def nights_between(check_in: Any, check_out: Any) -> int:
    start, end = parse_date(check_in), parse_date(check_out)
    if not start or not end:
        return 0
    return max(0, (end - start).days)
