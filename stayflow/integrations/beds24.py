"""Beds24 booking webhooks.

Bookings are keyed by the Beds24 booking id, so replays and modification
events update the same reservation row instead of creating new ones.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from stayflow.core.config import settings
from stayflow.scheduling.generator import on_reservation_saved
from stayflow.services.automation import cancel_pending_for_reservation
from stayflow.services.properties import (
    find_property_by_beds24_id,
    find_room_type_by_beds24_id,
    find_room_unit_by_beds24_id,
)
from stayflow.services.reservations import (
    get_reservation_by_beds24_id,
    update_reservation_status,
    upsert_reservation_from_booking,
)
from stayflow.services.webhooks import (
    get_webhook_event,
    log_webhook_event,
    mark_webhook_event_processed,
    reclaim_failed_webhook_event,
)

logger = logging.getLogger(__name__)

SOURCE = "beds24"
SIGNATURE_HEADERS = ("x-beds24-signature", "signature")

CREATE_EVENTS = {"booking_new", "booking_created", "new_booking"}
UPDATE_EVENTS = {"booking_modified", "booking_updated"}
CANCEL_EVENTS = {"booking_cancelled", "booking_deleted"}

# Numeric booking states used by the Beds24 API.
STATUS_CODES = {"0": "cancelled", "1": "confirmed", "2": "confirmed", "3": "pending", "4": "cancelled"}


class WebhookSignatureError(ValueError):
    pass


def verify_signature(raw_body: bytes, signature: str | None, *, secret: str | None = None) -> None:
    """Check the hex HMAC-SHA256 of the raw body when a secret is configured."""
    secret = settings.beds24_webhook_secret if secret is None else secret
    if not secret:
        return
    if not signature:
        raise WebhookSignatureError("Missing signature.")
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise WebhookSignatureError("Invalid signature.")


def event_type_of(payload: dict[str, Any]) -> str:
    return str(payload.get("event") or payload.get("type") or "booking_update").strip().lower()


def event_id_of(payload: dict[str, Any], raw_body: bytes) -> str:
    # Without an explicit id only byte-identical replays count as duplicates.
    if payload.get("eventId"):
        return str(payload["eventId"])
    return "sha256:" + hashlib.sha256(raw_body).hexdigest()


def classify_event(event_type: str) -> str:
    if event_type in CANCEL_EVENTS:
        return "cancel"
    if event_type in UPDATE_EVENTS:
        return "update"
    if event_type not in CREATE_EVENTS:
        logger.info("Unhandled Beds24 event type %s, treating as booking upsert", event_type)
    return "create"


def _first(booking: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = booking.get(key)
        if value not in (None, ""):
            return value
    return None


def _int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def booking_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Map a Beds24 booking to reservation API fields (property refs left as Beds24 ids)."""
    booking = payload.get("booking") if isinstance(payload.get("booking"), dict) else payload
    booking_id = _first(booking, "bookId", "id")
    if booking_id is None:
        raise ValueError("Beds24 payload has no booking id.")

    first_name = _first(booking, "firstName", "guestFirstName")
    last_name = _first(booking, "lastName", "guestLastName")
    full_name = _first(booking, "guestName") or " ".join(str(part) for part in (first_name, last_name) if part) or None
    adults = _int(_first(booking, "numAdult", "adults")) or 1
    children = _int(_first(booking, "numChild", "children")) or 0

    return {
        "beds24BookingId": str(booking_id),
        "bookingName": full_name,
        "bookingFirstname": first_name,
        "bookingLastname": last_name,
        "bookingEmail": _first(booking, "email"),
        "bookingPhone": _first(booking, "phone", "mobile", "telephone"),
        "checkInDate": _first(booking, "arrival", "checkIn"),
        "checkOutDate": _first(booking, "departure", "checkOut"),
        "numAdults": adults,
        "numChildren": children,
        "numGuests": adults + children,
        "totalAmount": _first(booking, "price", "total"),
        "currency": _first(booking, "currency"),
        "status": STATUS_CODES.get(str(_first(booking, "status")), _first(booking, "status")),
        "bookingSource": _first(booking, "referer", "channel", "apiSource"),
        "specialRequests": _first(booking, "comments", "notes"),
        "beds24PropertyId": _first(booking, "propertyId", "propId"),
        "beds24RoomTypeId": _first(booking, "roomId", "roomTypeId"),
        "beds24UnitId": _first(booking, "unitId"),
    }


def resolve_references(booking: dict[str, Any]) -> dict[str, Any]:
    """Swap Beds24 property/room/unit ids for local row ids where they are known."""
    resolved = {key: value for key, value in booking.items() if not key.startswith("beds24") or key == "beds24BookingId"}

    room_type = find_room_type_by_beds24_id(booking.get("beds24RoomTypeId"))
    property_row = find_property_by_beds24_id(booking.get("beds24PropertyId"))
    if property_row:
        resolved["propertyId"] = property_row["id"]
    elif room_type and room_type.get("property_id"):
        resolved["propertyId"] = room_type["property_id"]
    if room_type:
        resolved["roomTypeId"] = room_type["id"]
        unit = find_room_unit_by_beds24_id(booking.get("beds24UnitId"), room_type_id=room_type["id"])
        if unit:
            resolved["roomUnitId"] = unit["id"]
    elif booking.get("beds24RoomTypeId"):
        logger.warning(
            "Beds24 room %s is not mapped to a room type (booking %s)",
            booking.get("beds24RoomTypeId"),
            booking.get("beds24BookingId"),
        )
    return resolved


def process_booking_event(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    booking = booking_payload(payload)
    booking_id = booking["beds24BookingId"]
    result: dict[str, Any] = {"event": event_type, "beds24_booking_id": booking_id, "messages": None}

    if classify_event(event_type) == "cancel":
        existing = get_reservation_by_beds24_id(booking_id)
        if not existing:
            logger.info("Cancellation for unknown Beds24 booking %s ignored", booking_id)
            return {**result, "action": "ignored"}
        update_reservation_status(reservation_id=existing["id"], status="cancelled")
        cancelled = cancel_pending_for_reservation(reservation_id=existing["id"])
        logger.info("Reservation %s cancelled from Beds24 (%s pending messages cancelled)", existing["id"], cancelled)
        return {**result, "action": "cancelled", "reservation_id": str(existing["id"])}

    reservation, action, previous = upsert_reservation_from_booking(resolve_references(booking))
    logger.info("Beds24 booking %s %s as reservation %s", booking_id, action, reservation.get("id"))
    return {
        **result,
        "action": action,
        "reservation_id": str(reservation.get("id")),
        "messages": on_reservation_saved(reservation, previous=previous),
    }


def _claim_event(event_type: str, event_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    existing = get_webhook_event(source=SOURCE, event_id=event_id)
    if existing is None:
        return log_webhook_event(source=SOURCE, event_type=event_type, event_id=event_id, payload=payload)
    if existing.get("processed") or not existing.get("error"):
        return None
    logger.info("Retrying Beds24 event %s after failure: %s", event_id, existing["error"])
    return reclaim_failed_webhook_event(webhook_event_id=existing["id"])


def handle_beds24_webhook(payload: dict[str, Any], *, raw_body: bytes) -> dict[str, Any]:
    """Deduplicate, log and process one webhook delivery.

    Events that failed earlier are processed again when Beds24 retries them.
    """
    event_type = event_type_of(payload)
    event_id = event_id_of(payload, raw_body)

    logged = _claim_event(event_type, event_id, payload)
    if logged is None:
        logger.info("Beds24 event %s already processed", event_id)
        return {"event": event_type, "action": "duplicate", "reservation_id": None, "messages": None}

    try:
        result = process_booking_event(event_type, payload)
    except (RuntimeError, ValueError) as exc:
        mark_webhook_event_processed(webhook_event_id=logged["id"], error=str(exc))
        raise
    mark_webhook_event_processed(webhook_event_id=logged["id"])
    return result
