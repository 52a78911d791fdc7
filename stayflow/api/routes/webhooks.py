import json
import logging

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from stayflow.integrations.beds24 import (
    SIGNATURE_HEADERS,
    WebhookSignatureError,
    handle_beds24_webhook,
    verify_signature,
)
from stayflow.schemas.common import WebhookResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/beds24", response_model=WebhookResponse)
async def post_beds24_webhook(request: Request):
    raw_body = await request.body()
    signature = next((request.headers.get(name) for name in SIGNATURE_HEADERS if request.headers.get(name)), None)
    try:
        verify_signature(raw_body, signature)
    except WebhookSignatureError as exc:
        logger.warning("Rejected Beds24 webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not valid JSON.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object.")

    try:
        result = await run_in_threadpool(handle_beds24_webhook, payload, raw_body=raw_body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"ok": True, **result}
