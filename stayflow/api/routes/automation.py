from fastapi import APIRouter, Depends, HTTPException, Query, status

from stayflow.core.auth import AuthContext, require_admin
from stayflow.core.cache import TTLCache
from stayflow.core.config import settings
from stayflow.scheduling.generator import (
    dispatch_due_messages,
    preview_for_reservation,
    regenerate_for_reservation,
)
from stayflow.scheduling.runner import (
    SchedulerBusyError,
    get_scheduler_monitor_snapshot,
    run_message_scheduler_once_now,
)
from stayflow.schemas.common import (
    CancelScheduledResponse,
    DeleteResponse,
    DispatchSummary,
    MessageRuleCreateRequest,
    MessageRuleItem,
    MessageRuleListResponse,
    MessageRuleUpdateRequest,
    MessageRuleWriteResponse,
    MessageTemplateCreateRequest,
    MessageTemplateListResponse,
    MessageTemplateUpdateRequest,
    MessageTemplateWriteResponse,
    RegenerateResponse,
    RuleTemplateLinkRequest,
    ScheduledMessageListResponse,
    SchedulePreviewResponse,
    SchedulerMonitorResponse,
)
from stayflow.services.automation import (
    cancel_pending_for_reservation,
    create_message_rule,
    create_message_template,
    delete_message_rule,
    delete_message_template,
    get_message_rule,
    get_message_template,
    link_rule_template,
    list_message_rules,
    list_message_templates,
    list_scheduled_messages,
    update_message_rule,
    update_message_template,
)

router = APIRouter()
_CACHE = TTLCache(settings.cache_ttl_seconds)


@router.get("/rules", response_model=MessageRuleListResponse)
def get_message_rules(
    property_id: str | None = Query(default=None),
    _auth: AuthContext = Depends(require_admin),
):
    cache_key = f"automation:rules:{property_id}"
    cached = _CACHE.get(cache_key)
    if cached:
        return cached

    try:
        rows = list_message_rules(property_id=property_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    payload = {"items": rows, "count": len(rows)}
    _CACHE.set(cache_key, payload)
    return payload


@router.get("/rules/{rule_id}", response_model=MessageRuleItem)
def get_message_rule_detail(rule_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        row = get_message_rule(rule_id=rule_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message rule not found")
    return row


@router.post("/rules", response_model=MessageRuleWriteResponse)
def post_message_rule(payload: MessageRuleCreateRequest, _auth: AuthContext = Depends(require_admin)):
    try:
        row = create_message_rule(payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "rule": row}


@router.patch("/rules/{rule_id}", response_model=MessageRuleWriteResponse)
def patch_message_rule(
    rule_id: str,
    payload: MessageRuleUpdateRequest,
    _auth: AuthContext = Depends(require_admin),
):
    updates = payload.to_payload()
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No message rule fields provided for update.",
        )

    try:
        row = update_message_rule(rule_id=rule_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message rule not found")

    _CACHE.clear()
    return {"ok": True, "rule": row}


@router.delete("/rules/{rule_id}", response_model=DeleteResponse)
def delete_message_rule_route(rule_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        row = delete_message_rule(rule_id=rule_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message rule not found")

    _CACHE.clear()
    return {"ok": True, "id": rule_id, "soft_deleted": False}


@router.post("/rules/{rule_id}/templates")
def post_rule_template_link(
    rule_id: str,
    payload: RuleTemplateLinkRequest,
    _auth: AuthContext = Depends(require_admin),
):
    try:
        if not get_message_rule(rule_id=rule_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message rule not found")
        if not get_message_template(template_id=payload.template_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message template not found")
        link = link_rule_template(
            rule_id=rule_id,
            template_id=payload.template_id,
            is_primary=payload.is_primary,
            priority=payload.priority,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "link": link}


@router.get("/templates", response_model=MessageTemplateListResponse)
def get_message_templates(
    channel: str | None = Query(default=None),
    language: str | None = Query(default=None),
    property_id: str | None = Query(default=None),
    _auth: AuthContext = Depends(require_admin),
):
    cache_key = f"automation:templates:{channel}:{language}:{property_id}"
    cached = _CACHE.get(cache_key)
    if cached:
        return cached

    try:
        rows = list_message_templates(channel=channel, language=language, property_id=property_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    payload = {"items": rows, "count": len(rows)}
    _CACHE.set(cache_key, payload)
    return payload


@router.post("/templates", response_model=MessageTemplateWriteResponse)
def post_message_template(payload: MessageTemplateCreateRequest, _auth: AuthContext = Depends(require_admin)):
    try:
        row = create_message_template(payload=payload.to_payload())
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    _CACHE.clear()
    return {"ok": True, "template": row}


@router.patch("/templates/{template_id}", response_model=MessageTemplateWriteResponse)
def patch_message_template(
    template_id: str,
    payload: MessageTemplateUpdateRequest,
    _auth: AuthContext = Depends(require_admin),
):
    updates = payload.to_payload()
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No message template fields provided for update.",
        )

    try:
        row = update_message_template(template_id=template_id, payload=updates)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message template not found")

    _CACHE.clear()
    return {"ok": True, "template": row}


@router.delete("/templates/{template_id}", response_model=DeleteResponse)
def delete_message_template_route(template_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        row = delete_message_template(template_id=template_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message template not found")

    _CACHE.clear()
    return {"ok": True, "id": template_id, "soft_deleted": False}


@router.get("/scheduled", response_model=ScheduledMessageListResponse)
def get_scheduled_messages(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    reservation_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    _auth: AuthContext = Depends(require_admin),
):
    try:
        rows, total = list_scheduled_messages(
            reservation_id=reservation_id,
            status=status_filter,
            limit=limit,
            offset=offset,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return {
        "items": rows,
        "count": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(rows) < total,
    }


@router.get("/reservations/{reservation_id}/preview", response_model=SchedulePreviewResponse)
def get_schedule_preview(reservation_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        items = preview_for_reservation(reservation_id=reservation_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if items is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return {"reservation_id": reservation_id, "items": items, "count": len(items)}


@router.post("/reservations/{reservation_id}/regenerate", response_model=RegenerateResponse)
def post_regenerate_schedule(reservation_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        result = regenerate_for_reservation(reservation_id=reservation_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return {"ok": True, "reservation_id": reservation_id, **result}


@router.post("/reservations/{reservation_id}/cancel", response_model=CancelScheduledResponse)
def post_cancel_schedule(reservation_id: str, _auth: AuthContext = Depends(require_admin)):
    try:
        cancelled = cancel_pending_for_reservation(reservation_id=reservation_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"ok": True, "reservation_id": reservation_id, "cancelled": cancelled}


@router.post("/dispatch", response_model=DispatchSummary)
def post_dispatch_due(
    limit: int = Query(default=50, ge=1, le=500),
    _auth: AuthContext = Depends(require_admin),
):
    try:
        return dispatch_due_messages(limit=limit)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/scheduler/monitor", response_model=SchedulerMonitorResponse)
def get_scheduler_monitor(_auth: AuthContext = Depends(require_admin)):
    return get_scheduler_monitor_snapshot()


@router.post("/scheduler/run", response_model=SchedulerMonitorResponse)
def post_scheduler_run(_auth: AuthContext = Depends(require_admin)):
    try:
        return run_message_scheduler_once_now()
    except SchedulerBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
