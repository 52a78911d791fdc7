from fastapi import APIRouter, Depends, HTTPException, Query, status

from stayflow.core.auth import AuthContext, require_staff
from stayflow.schemas.common import (
    GuestMessageWriteResponse,
    GuestThreadResponse,
    HostMessageCreateRequest,
    ThreadListResponse,
    ThreadReadResponse,
    ThreadStatsResponse,
    ThreadStatusUpdateRequest,
    ThreadWriteResponse,
)
from stayflow.services.messaging import (
    get_thread,
    list_messages,
    list_threads,
    mark_thread_read,
    send_message,
    thread_stats,
    update_thread_status,
)

router = APIRouter()


def _load_thread(thread_id: str) -> dict:
    try:
        row = get_thread(thread_id=thread_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return row


@router.get("", response_model=ThreadListResponse)
def get_threads(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    status_filter: str | None = Query(default=None, alias="status"),
    _auth: AuthContext = Depends(require_staff),
):
    try:
        rows, total = list_threads(status=status_filter, limit=limit, offset=offset)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "items": rows,
        "count": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(rows) < total,
    }


@router.get("/{thread_id}", response_model=GuestThreadResponse)
def get_thread_detail(
    thread_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _auth: AuthContext = Depends(require_staff),
):
    thread = _load_thread(thread_id)
    try:
        messages = list_messages(thread_id=thread_id, limit=limit, offset=offset)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"thread": thread, "messages": messages, "count": len(messages)}


@router.get("/{thread_id}/stats", response_model=ThreadStatsResponse)
def get_thread_stats(thread_id: str, _auth: AuthContext = Depends(require_staff)):
    _load_thread(thread_id)
    try:
        return thread_stats(thread_id=thread_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.post("/{thread_id}/messages", response_model=GuestMessageWriteResponse)
def post_host_message(
    thread_id: str,
    payload: HostMessageCreateRequest,
    _auth: AuthContext = Depends(require_staff),
):
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is empty.")
    _load_thread(thread_id)

    try:
        message = send_message(
            thread_id=thread_id,
            channel=payload.channel,
            content=content,
            origin_role="host",
            parent_message_id=payload.parent_message_id,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"ok": True, "message": message}


@router.post("/{thread_id}/read", response_model=ThreadReadResponse)
def post_thread_read(thread_id: str, _auth: AuthContext = Depends(require_staff)):
    _load_thread(thread_id)
    try:
        marked = mark_thread_read(thread_id=thread_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"ok": True, "thread_id": thread_id, "marked_read": marked}


@router.patch("/{thread_id}/status", response_model=ThreadWriteResponse)
def patch_thread_status(
    thread_id: str,
    payload: ThreadStatusUpdateRequest,
    _auth: AuthContext = Depends(require_staff),
):
    try:
        row = update_thread_status(thread_id=thread_id, status=payload.status)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    return {"ok": True, "thread": row}
