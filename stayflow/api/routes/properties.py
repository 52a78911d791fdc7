from fastapi import APIRouter, Depends, HTTPException, Query, status

from stayflow.core.auth import AuthContext, ensure_property_access, require_admin, require_staff
from stayflow.core.cache import TTLCache
from stayflow.core.config import settings
from stayflow.schemas.common import (
    DeleteResponse,
    PropertyCreateRequest,
    PropertyItem,
    PropertyListResponse,
    PropertyUpdateRequest,
    PropertyWriteResponse,
    RoomTypeCreateRequest,
    RoomTypeListResponse,
    RoomTypeUpdateRequest,
    RoomTypeWriteResponse,
    RoomUnitCreateRequest,
    RoomUnitListResponse,
    RoomUnitUpdateRequest,
    RoomUnitWriteResponse,
)
from stayflow.services.properties import (
    create_property,
    create_room_type,
    create_room_unit,
    delete_property,
    delete_room_type,
    delete_room_unit,
    get_property,
    get_room_type,
    get_room_unit,
    list_properties,
    list_properties_with_stats,
    list_room_types,
    list_room_units,
    update_property,
    update_room_type,
    update_room_unit,
)

router = APIRouter()
_CACHE = TTLCache(settings.cache_ttl_seconds)


def _load_property(property_id: str, auth: AuthContext) -> dict:
    try:
        row = get_property(property_id=property_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
    ensure_property_access(auth, row)
    return row


def _load_room_type(room_type_id: str, auth: AuthContext) -> dict:
    try:
        row = get_room_type(room_type_id=room_type_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found")
    _load_property(str(row["property_id"]), auth)
    return row


@router.get("", response_model=PropertyListResponse)
def get_properties(
    with_stats: bool = Query(default=False),
    auth: AuthContext = Depends(require_staff),
):
    cache_key = f"properties:list:{auth.owner_scope}:{with_stats}"
    cached = _CACHE.get(cache_key)
    if cached:
        return cached

    try:
        if with_stats:
            rows = list_properties_with_stats(owner_id=auth.owner_scope)
        else:
            rows = list_properties(owner_id=auth.owner_scope)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    payload = {"items": rows, "count": len(rows)}
    _CACHE.set(cache_key, payload)
    return payload


@router.get("/{property_id}", response_model=PropertyItem)
def get_property_detail(
    property_id: str,
    auth: AuthContext = Depends(require_staff),
):
    return _load_property(property_id, auth)


@router.post("", response_model=PropertyWriteResponse)
def post_property(
    payload: PropertyCreateRequest,
    auth: AuthContext = Depends(require_staff),
):
    data = payload.to_payload()
    if auth.owner_scope is not None:
        data["ownerId"] = auth.owner_scope

    try:
        row = create_property(payload=data)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "property": row}


@router.patch("/{property_id}", response_model=PropertyWriteResponse)
def patch_property(
    property_id: str,
    payload: PropertyUpdateRequest,
    auth: AuthContext = Depends(require_staff),
):
    updates = payload.to_payload()
    if auth.owner_scope is not None:
        updates.pop("ownerId", None)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No property fields provided for update.",
        )
    _load_property(property_id, auth)

    try:
        row = update_property(property_id=property_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")

    _CACHE.clear()
    return {"ok": True, "property": row}


@router.delete("/{property_id}", response_model=DeleteResponse)
def delete_property_route(
    property_id: str,
    _auth: AuthContext = Depends(require_admin),
):
    try:
        row = delete_property(property_id=property_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")

    _CACHE.clear()
    return {"ok": True, "id": property_id, "soft_deleted": True}


@router.get("/{property_id}/room-types", response_model=RoomTypeListResponse)
def get_room_types(
    property_id: str,
    with_units: bool = Query(default=False),
    auth: AuthContext = Depends(require_staff),
):
    _load_property(property_id, auth)
    try:
        rows = list_room_types(property_id=property_id, with_units=with_units)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"items": rows, "count": len(rows)}


@router.post("/{property_id}/room-types", response_model=RoomTypeWriteResponse)
def post_room_type(
    property_id: str,
    payload: RoomTypeCreateRequest,
    auth: AuthContext = Depends(require_staff),
):
    _load_property(property_id, auth)
    try:
        row = create_room_type(property_id=property_id, payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "room_type": row}


@router.patch("/room-types/{room_type_id}", response_model=RoomTypeWriteResponse)
def patch_room_type(
    room_type_id: str,
    payload: RoomTypeUpdateRequest,
    auth: AuthContext = Depends(require_staff),
):
    updates = payload.to_payload()
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No room type fields provided for update.",
        )
    _load_room_type(room_type_id, auth)

    try:
        row = update_room_type(room_type_id=room_type_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found")

    _CACHE.clear()
    return {"ok": True, "room_type": row}


@router.delete("/room-types/{room_type_id}", response_model=DeleteResponse)
def delete_room_type_route(
    room_type_id: str,
    auth: AuthContext = Depends(require_staff),
):
    _load_room_type(room_type_id, auth)
    try:
        row = delete_room_type(room_type_id=room_type_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found")

    _CACHE.clear()
    return {"ok": True, "id": room_type_id, "soft_deleted": True}


@router.get("/room-types/{room_type_id}/units", response_model=RoomUnitListResponse)
def get_room_units(
    room_type_id: str,
    auth: AuthContext = Depends(require_staff),
):
    _load_room_type(room_type_id, auth)
    try:
        rows = list_room_units(room_type_id=room_type_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"items": rows, "count": len(rows)}


@router.post("/room-types/{room_type_id}/units", response_model=RoomUnitWriteResponse)
def post_room_unit(
    room_type_id: str,
    payload: RoomUnitCreateRequest,
    auth: AuthContext = Depends(require_staff),
):
    _load_room_type(room_type_id, auth)
    try:
        row = create_room_unit(room_type_id=room_type_id, payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "room_unit": row}


def _load_room_unit(room_unit_id: str, auth: AuthContext) -> dict:
    try:
        row = get_room_unit(room_unit_id=room_unit_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room unit not found")
    _load_room_type(str(row["room_type_id"]), auth)
    return row


@router.patch("/room-units/{room_unit_id}", response_model=RoomUnitWriteResponse)
def patch_room_unit(
    room_unit_id: str,
    payload: RoomUnitUpdateRequest,
    auth: AuthContext = Depends(require_staff),
):
    updates = payload.to_payload()
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No room unit fields provided for update.",
        )
    _load_room_unit(room_unit_id, auth)

    try:
        row = update_room_unit(room_unit_id=room_unit_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room unit not found")

    _CACHE.clear()
    return {"ok": True, "room_unit": row}


@router.delete("/room-units/{room_unit_id}", response_model=DeleteResponse)
def delete_room_unit_route(
    room_unit_id: str,
    auth: AuthContext = Depends(require_staff),
):
    _load_room_unit(room_unit_id, auth)
    try:
        row = delete_room_unit(room_unit_id=room_unit_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room unit not found")

    _CACHE.clear()
    return {"ok": True, "id": room_unit_id, "soft_deleted": False}
