import logging

from fastapi import APIRouter, HTTPException, Query, status

from stayflow.guest.access import build_guest_portal
from stayflow.schemas.common import (
    GuestAccessReadResponse,
    GuestCheckinRequest,
    GuestCheckinResponse,
    GuestMessageCreateRequest,
    GuestMessageWriteResponse,
    GuestPortalResponse,
    GuestServiceListResponse,
    GuestThreadResponse,
)
from stayflow.services.guest_services import all_mandatory_settled, guest_service_view, list_reservation_addons
from stayflow.services.messaging import find_or_create_thread, list_messages, receive_message
from stayflow.services.reservations import (
    completion_status,
    get_reservation_by_token,
    list_reservation_guests,
    mark_access_read,
    submit_guest_checkin,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _reservation_for_token(token: str) -> dict:
    try:
        reservation = get_reservation_by_token(token)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not reservation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return reservation


def _open_reservation_for_token(token: str) -> dict:
    reservation = _reservation_for_token(token)
    if reservation.get("status") == "cancelled":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reservation is cancelled.")
    return reservation


@router.get("/{token}", response_model=GuestPortalResponse)
def get_guest_portal(token: str):
    reservation = _reservation_for_token(token)
    try:
        return build_guest_portal(reservation)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.post("/{token}/checkin", response_model=GuestCheckinResponse)
def post_guest_checkin(token: str, payload: GuestCheckinRequest):
    reservation = _open_reservation_for_token(token)
    num_guests = int(reservation.get("num_guests") or 1)
    if payload.guest_number > num_guests:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Guest number must be between 1 and {num_guests}.",
        )
    if payload.guest_number == 1 and not payload.agreement_accepted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The primary guest must accept the house agreement.",
        )

    data = payload.model_dump(by_alias=True)
    data.pop("guestNumber", None)
    try:
        guest = submit_guest_checkin(
            reservation_id=reservation["id"],
            guest_number=payload.guest_number,
            payload=data,
        )
        guests = list_reservation_guests(reservation_id=reservation["id"])
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    completion = completion_status(reservation, guests)
    logger.info(
        "Guest check-in saved: reservation_id=%s guest_number=%s complete=%s",
        reservation["id"],
        payload.guest_number,
        completion["is_complete"],
    )
    return {"ok": True, "guest": guest, "completion": completion}


@router.get("/{token}/services", response_model=GuestServiceListResponse)
def get_guest_services(token: str):
    reservation = _reservation_for_token(token)
    try:
        addons = list_reservation_addons(reservation_id=reservation["id"], admin_enabled_only=True)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    services = [guest_service_view(addon) for addon in addons]
    return {
        "items": services,
        "count": len(services),
        "all_mandatory_settled": all_mandatory_settled(services),
    }


@router.get("/{token}/thread", response_model=GuestThreadResponse)
def get_guest_thread(
    token: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    reservation = _reservation_for_token(token)
    try:
        thread = find_or_create_thread(reservation_id=reservation["id"])
        messages = list_messages(thread_id=thread["id"], limit=limit, offset=offset)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"thread": thread, "messages": messages, "count": len(messages)}


@router.get("/{token}/thread/messages", response_model=GuestThreadResponse)
def get_guest_messages(
    token: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    return get_guest_thread(token, limit=limit, offset=offset)


@router.post("/{token}/thread/messages", response_model=GuestMessageWriteResponse)
def post_guest_message(token: str, payload: GuestMessageCreateRequest):
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is empty.")
    reservation = _open_reservation_for_token(token)

    try:
        thread = find_or_create_thread(reservation_id=reservation["id"])
        message = receive_message(
            thread_id=thread["id"],
            channel=payload.channel,
            content=content,
            origin_role="guest",
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"ok": True, "message": message}


@router.post("/{token}/access-read", response_model=GuestAccessReadResponse)
def post_access_read(token: str):
    reservation = _reservation_for_token(token)
    try:
        mark_access_read(reservation_id=reservation["id"])
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"ok": True, "reservation_id": str(reservation["id"])}
