from fastapi import APIRouter, Depends, HTTPException, Query, status

from stayflow.core.auth import AuthContext, require_admin
from stayflow.core.cache import TTLCache
from stayflow.core.config import settings
from stayflow.schemas.common import (
    DeleteResponse,
    UserCreateRequest,
    UserItem,
    UserListResponse,
    UserStatsResponse,
    UserUpdateRequest,
    UserWriteResponse,
)
from stayflow.services.users import create_user, delete_user, get_user, list_users, update_user, user_stats

router = APIRouter()
_CACHE = TTLCache(settings.cache_ttl_seconds)


@router.get("", response_model=UserListResponse)
def get_users(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    role: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    _auth: AuthContext = Depends(require_admin),
):
    cache_key = f"users:list:{limit}:{offset}:{role}:{include_inactive}"
    cached = _CACHE.get(cache_key)
    if cached:
        return cached

    try:
        rows, total = list_users(role=role, include_inactive=include_inactive, limit=limit, offset=offset)
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


@router.get("/stats", response_model=UserStatsResponse)
def get_user_stats(_auth: AuthContext = Depends(require_admin)):
    try:
        return user_stats()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/{user_id}", response_model=UserItem)
def get_user_detail(user_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        row = get_user(user_id=user_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return row


@router.post("", response_model=UserWriteResponse)
def post_user(payload: UserCreateRequest, _auth: AuthContext = Depends(require_admin)):
    try:
        row = create_user(payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "user": row}


@router.patch("/{user_id}", response_model=UserWriteResponse)
def patch_user(
    user_id: str,
    payload: UserUpdateRequest,
    auth: AuthContext = Depends(require_admin),
):
    updates = payload.to_payload()
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No user fields provided for update.",
        )
    if user_id == auth.user_id and updates.get("isActive") is False:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account.")

    try:
        row = update_user(user_id=user_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    _CACHE.clear()
    return {"ok": True, "user": row}


@router.delete("/{user_id}", response_model=DeleteResponse)
def delete_user_route(user_id: str, auth: AuthContext = Depends(require_admin)):
    if user_id == auth.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account.")
    try:
        row = delete_user(user_id=user_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    _CACHE.clear()
    return {"ok": True, "id": user_id, "soft_deleted": True}
