from fastapi import APIRouter, Depends, HTTPException, Query, status

from stayflow.api.deps import owned_property_ids
from stayflow.core.auth import AuthContext, require_staff
from stayflow.core.cache import TTLCache
from stayflow.core.config import settings
from stayflow.scheduling.generator import on_reservation_saved
from stayflow.schemas.common import (
    DashboardStatsResponse,
    ReservationCreateRequest,
    ReservationItem,
    ReservationListResponse,
    ReservationServicesResponse,
    ReservationServiceToggleRequest,
    ReservationStatusUpdateRequest,
    ReservationUpdateRequest,
    ReservationWriteResponse,
)
from stayflow.services.guest_services import (
    all_mandatory_settled,
    guest_service_view,
    list_guest_services,
    list_reservation_addons,
    set_service_enabled,
)
from stayflow.services.reservations import (
    create_reservation,
    get_reservation,
    list_reservation_guests,
    list_reservations,
    today_dashboard_stats,
    update_reservation,
)

router = APIRouter()
_CACHE = TTLCache(settings.cache_ttl_seconds)


def _load_reservation(reservation_id: str, auth: AuthContext) -> dict:
    try:
        row = get_reservation(reservation_id=reservation_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")

    scope = owned_property_ids(auth)
    if scope is not None and str(row.get("property_id")) not in scope:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return row


@router.get("", response_model=ReservationListResponse)
def get_reservations(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    property_id: str | None = Query(default=None),
    room_type_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    check_in_date: str | None = Query(default=None),
    check_in_from: str | None = Query(default=None),
    check_in_to: str | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    sort_by: str | None = Query(default=None),
    sort_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    auth: AuthContext = Depends(require_staff),
):
    filters = {
        "property_id": property_id,
        "property_ids": owned_property_ids(auth),
        "room_type_id": room_type_id,
        "status": status_filter,
        "check_in_date": check_in_date,
        "check_in_from": check_in_from,
        "check_in_to": check_in_to,
        "include_cancelled": include_cancelled,
    }
    cache_key = f"reservations:list:{auth.owner_scope}:{limit}:{offset}:{sorted(filters.items(), key=str)}:{sort_by}:{sort_dir}"
    cached = _CACHE.get(cache_key)
    if cached:
        return cached

    try:
        rows, total = list_reservations(
            filters=filters,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_dir=sort_dir,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    payload = {
        "items": rows,
        "count": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(rows) < total,
    }
    _CACHE.set(cache_key, payload)
    return payload


@router.get("/stats/today", response_model=DashboardStatsResponse)
def get_today_stats(auth: AuthContext = Depends(require_staff)):
    try:
        return today_dashboard_stats(property_ids=owned_property_ids(auth))
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/services/catalog")
def get_guest_service_catalog(_auth: AuthContext = Depends(require_staff)):
    try:
        rows = list_guest_services()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"items": rows, "count": len(rows)}


@router.get("/{reservation_id}", response_model=ReservationItem)
def get_reservation_detail(
    reservation_id: str,
    auth: AuthContext = Depends(require_staff),
):
    return _load_reservation(reservation_id, auth)


@router.get("/{reservation_id}/guests")
def get_reservation_guests(
    reservation_id: str,
    auth: AuthContext = Depends(require_staff),
):
    _load_reservation(reservation_id, auth)
    try:
        rows = list_reservation_guests(reservation_id=reservation_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"items": rows, "count": len(rows)}


@router.post("", response_model=ReservationWriteResponse)
def post_reservation(
    payload: ReservationCreateRequest,
    auth: AuthContext = Depends(require_staff),
):
    if payload.check_out_date <= payload.check_in_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="check_out_date must be after check_in_date.",
        )
    scope = owned_property_ids(auth)
    if scope is not None and payload.property_id not in scope:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not allowed to access this property.")

    try:
        row = create_reservation(payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    on_reservation_saved(row)
    _CACHE.clear()
    return {"ok": True, "reservation": row}


@router.patch("/{reservation_id}", response_model=ReservationWriteResponse)
def patch_reservation(
    reservation_id: str,
    payload: ReservationUpdateRequest,
    auth: AuthContext = Depends(require_staff),
):
    updates = payload.to_payload()
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No reservation fields provided for update.",
        )
    before = _load_reservation(reservation_id, auth)

    try:
        row = update_reservation(reservation_id=reservation_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")

    on_reservation_saved(row, previous=before)
    _CACHE.clear()
    return {"ok": True, "reservation": row}


@router.get("/{reservation_id}/services", response_model=ReservationServicesResponse)
def get_reservation_services(
    reservation_id: str,
    auth: AuthContext = Depends(require_staff),
):
    _load_reservation(reservation_id, auth)
    try:
        services = [guest_service_view(addon) for addon in list_reservation_addons(reservation_id=reservation_id)]
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "reservation_id": reservation_id,
        "items": services,
        "count": len(services),
        "all_mandatory_settled": all_mandatory_settled(services),
    }


@router.put("/{reservation_id}/services/{service_key}")
def put_reservation_service(
    reservation_id: str,
    service_key: str,
    payload: ReservationServiceToggleRequest,
    auth: AuthContext = Depends(require_staff),
):
    _load_reservation(reservation_id, auth)
    try:
        row = set_service_enabled(reservation_id=reservation_id, service_key=service_key, enabled=payload.enabled)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Guest service not found")
    return {"ok": True, "addon": row}


@router.patch("/{reservation_id}/status", response_model=ReservationWriteResponse)
def patch_reservation_status(
    reservation_id: str,
    payload: ReservationStatusUpdateRequest,
    auth: AuthContext = Depends(require_staff),
):
    before = _load_reservation(reservation_id, auth)
    try:
        row = update_reservation(reservation_id=reservation_id, payload={"status": payload.status.value})
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")

    if row.get("status") == "cancelled":
        on_reservation_saved(row, previous=before)
    _CACHE.clear()
    return {"ok": True, "reservation": row}
