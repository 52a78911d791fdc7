from __future__ import annotations

from datetime import datetime
from typing import Any

from stayflow.core.config import settings
from stayflow.core.timeutil import at_local, parse_clock, parse_date, utc_now
from stayflow.services.automation import get_reservation_context
from stayflow.services.guest_services import (
    all_mandatory_settled,
    effective_times,
    guest_service_view,
    list_reservation_addons,
)
from stayflow.services.reservations import completion_status, list_reservation_guests

JOURNEY_STEPS = ("checkin", "tax_payment", "access_available")

# Hidden until check-in is complete and mandatory services are settled.
STAY_INFO_FIELDS = ("wifi_name", "wifi_password", "check_in_instructions")
# Hidden until the room unlocks.
ROOM_SECRET_FIELDS = ("access_code", "access_instructions")


def unlock_time(reservation: dict[str, Any], property_row: dict[str, Any] | None, access_time: str) -> datetime | None:
    check_in_day = parse_date(reservation.get("check_in_date"))
    if check_in_day is None:
        return None
    tz_name = (property_row or {}).get("timezone") or settings.default_timezone
    return at_local(check_in_day, parse_clock(access_time, settings.default_check_in_time), tz_name)


def access_state(
    reservation: dict[str, Any],
    property_row: dict[str, Any] | None,
    room_unit: dict[str, Any] | None,
    services: list[dict[str, Any]],
    *,
    checkin_complete: bool,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Gate stay information and room access for the guest portal.

    Stay info needs a complete check-in and settled mandatory services; the room
    additionally needs the property-local clock to reach the effective access
    time on (or after) the check-in date.
    """
    times = effective_times(
        property_row,
        services,
        default_access=settings.default_check_in_time,
        default_departure=settings.default_check_out_time,
    )
    settled = all_mandatory_settled(services)
    can_show_stay_info = checkin_complete and settled
    unlocks_at = unlock_time(reservation, property_row, times["access_time"])
    room_unlocked = bool(can_show_stay_info and unlocks_at and (now or utc_now()) >= unlocks_at)

    room_unit = room_unit or {}
    return {
        "checkin_complete": checkin_complete,
        "services_settled": settled,
        "can_show_stay_info": can_show_stay_info,
        "room_unlocked": room_unlocked,
        "access_time": times["access_time"],
        "departure_time": times["departure_time"],
        "unlocks_at": unlocks_at,
        "access_code": room_unit.get("access_code") if room_unlocked else None,
        "access_instructions": room_unit.get("access_instructions") if room_unlocked else None,
    }


def journey(*, checkin_complete: bool, services: list[dict[str, Any]], room_unlocked: bool) -> dict[str, Any]:
    settled = all_mandatory_settled(services)
    if settled:
        tax_status = "completed"
    else:
        tax_status = "current" if checkin_complete else "pending"

    if not (checkin_complete and settled):
        access_status = "pending"
    else:
        access_status = "completed" if room_unlocked else "current"

    statuses = {
        "checkin": "completed" if checkin_complete else "current",
        "tax_payment": tax_status,
        "access_available": access_status,
    }
    steps = [{"key": key, "status": statuses[key]} for key in JOURNEY_STEPS]
    completed = sum(1 for step in steps if step["status"] == "completed")
    current = next((step["key"] for step in steps if step["status"] == "current"), JOURNEY_STEPS[-1])
    return {
        "steps": steps,
        "current_step": current,
        "progress": round(completed / len(steps) * 100),
    }


def _without(row: dict[str, Any] | None, fields: tuple[str, ...]) -> dict[str, Any] | None:
    if row is None:
        return None
    return {key: value for key, value in row.items() if key not in fields}


def build_guest_portal(reservation: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    """Everything the guest app shows for one reservation."""
    context = get_reservation_context(reservation_id=reservation["id"]) or reservation
    property_row = context.get("properties") or None
    room_type = context.get("room_types") or {}
    room_unit = context.get("room_units") or {}

    guests = list_reservation_guests(reservation_id=reservation["id"])
    completion = completion_status(context, guests)
    services = [
        guest_service_view(addon)
        for addon in list_reservation_addons(reservation_id=reservation["id"], admin_enabled_only=True)
    ]
    access = access_state(
        context,
        property_row,
        room_unit,
        services,
        checkin_complete=completion["is_complete"],
        now=now,
    )

    room = None
    if room_type or room_unit:
        room = {**room_type, **_without(room_unit, ROOM_SECRET_FIELDS)}
    if property_row and not access["can_show_stay_info"]:
        property_row = _without(property_row, STAY_INFO_FIELDS)

    return {
        "reservation": {
            key: value
            for key, value in context.items()
            if key not in {"properties", "room_types", "room_units", "message_threads"}
        },
        "guests": guests,
        "completion": completion,
        "property": property_row,
        "room": room,
        "services": services,
        "journey": journey(
            checkin_complete=completion["is_complete"],
            services=services,
            room_unlocked=access["room_unlocked"],
        ),
        "access": access,
    }
