from fastapi import APIRouter, Depends, HTTPException, Query, status

from stayflow.api.deps import owned_property_ids
from stayflow.core.auth import AuthContext, require_cleaning_access, require_staff
from stayflow.core.cache import TTLCache
from stayflow.core.config import settings
from stayflow.schemas.common import (
    CleaningAssignRequest,
    CleaningStatsResponse,
    CleaningTaskCreateRequest,
    CleaningTaskItem,
    CleaningTaskListResponse,
    CleaningTaskUpdateRequest,
    CleaningTaskWriteResponse,
    DeleteResponse,
)
from stayflow.services.cleaning import (
    assign_cleaner,
    cleaning_task_stats,
    create_cleaning_task,
    delete_cleaning_task,
    get_cleaning_task,
    list_available_cleaners,
    list_cleaning_tasks,
    update_cleaning_task,
)

router = APIRouter()
_CACHE = TTLCache(settings.cache_ttl_seconds)


def _scope_filters(auth: AuthContext) -> dict:
    if auth.role == "cleaner":
        return {"cleaner_id": auth.user_id}
    return {"property_ids": owned_property_ids(auth)}


def _load_task(task_id: str, auth: AuthContext) -> dict:
    try:
        row = get_cleaning_task(task_id=task_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cleaning task not found")

    scope = _scope_filters(auth)
    if scope.get("cleaner_id") and str(row.get("cleaner_id")) != scope["cleaner_id"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cleaning task not found")
    if scope.get("property_ids") is not None and str(row.get("property_id")) not in scope["property_ids"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cleaning task not found")
    return row


@router.get("", response_model=CleaningTaskListResponse)
def get_cleaning_tasks(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    property_id: str | None = Query(default=None),
    cleaner_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    task_date: str | None = Query(default=None),
    task_date_from: str | None = Query(default=None),
    task_date_to: str | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    sort_by: str | None = Query(default=None),
    sort_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    auth: AuthContext = Depends(require_cleaning_access),
):
    filters = {
        "property_id": property_id,
        "cleaner_id": cleaner_id,
        "status": status_filter,
        "task_date": task_date,
        "task_date_from": task_date_from,
        "task_date_to": task_date_to,
        "include_cancelled": include_cancelled,
        **_scope_filters(auth),
    }
    cache_key = f"cleaning:list:{auth.user_id}:{limit}:{offset}:{sorted(filters.items(), key=str)}:{sort_by}:{sort_dir}"
    cached = _CACHE.get(cache_key)
    if cached:
        return cached

    try:
        rows, total = list_cleaning_tasks(
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


@router.get("/stats", response_model=CleaningStatsResponse)
def get_cleaning_stats(
    property_id: str | None = Query(default=None),
    task_date: str | None = Query(default=None),
    task_date_from: str | None = Query(default=None),
    task_date_to: str | None = Query(default=None),
    auth: AuthContext = Depends(require_staff),
):
    filters = {
        "property_id": property_id,
        "task_date": task_date,
        "task_date_from": task_date_from,
        "task_date_to": task_date_to,
        **_scope_filters(auth),
    }
    try:
        return cleaning_task_stats(filters=filters)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/cleaners")
def get_available_cleaners(_auth: AuthContext = Depends(require_staff)):
    try:
        rows = list_available_cleaners()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"items": rows, "count": len(rows)}


@router.get("/{task_id}", response_model=CleaningTaskItem)
def get_cleaning_task_detail(
    task_id: str,
    auth: AuthContext = Depends(require_cleaning_access),
):
    return _load_task(task_id, auth)


@router.post("", response_model=CleaningTaskWriteResponse)
def post_cleaning_task(
    payload: CleaningTaskCreateRequest,
    auth: AuthContext = Depends(require_staff),
):
    scope = owned_property_ids(auth)
    if scope is not None and payload.property_id not in scope:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not allowed to access this property.")

    try:
        row = create_cleaning_task(payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "task": row}


@router.patch("/{task_id}", response_model=CleaningTaskWriteResponse)
def patch_cleaning_task(
    task_id: str,
    payload: CleaningTaskUpdateRequest,
    auth: AuthContext = Depends(require_cleaning_access),
):
    updates = payload.to_payload()
    if auth.role == "cleaner":
        # Cleaners only move their own tasks through the workflow.
        updates = {key: value for key, value in updates.items() if key in {"status", "startedAt", "completedAt"}}
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No cleaning task fields provided for update.",
        )
    _load_task(task_id, auth)

    try:
        row = update_cleaning_task(task_id=task_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cleaning task not found")

    _CACHE.clear()
    return {"ok": True, "task": row}


@router.post("/{task_id}/assign", response_model=CleaningTaskWriteResponse)
def post_assign_cleaner(
    task_id: str,
    payload: CleaningAssignRequest,
    auth: AuthContext = Depends(require_staff),
):
    _load_task(task_id, auth)
    try:
        row = assign_cleaner(task_id=task_id, cleaner_id=payload.cleaner_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cleaning task not found")

    _CACHE.clear()
    return {"ok": True, "task": row}


@router.delete("/{task_id}", response_model=DeleteResponse)
def delete_cleaning_task_route(
    task_id: str,
    auth: AuthContext = Depends(require_staff),
):
    _load_task(task_id, auth)
    try:
        row = delete_cleaning_task(task_id=task_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cleaning task not found")

    _CACHE.clear()
    return {"ok": True, "id": task_id, "soft_deleted": False}
