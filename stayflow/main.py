import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from stayflow.api.router import router as api_router
from stayflow.core.config import settings
from stayflow.core.logging_config import configure_logging
from stayflow.integrations.supabase_client import StorageError
from stayflow.middleware.correlation import CorrelationIdMiddleware
from stayflow.middleware.performance import ApiPerformanceMiddleware
from stayflow.scheduling.runner import get_scheduler_monitor_snapshot, message_scheduler_loop
from stayflow.schemas.errors import ErrorBody, ErrorEnvelope

configure_logging()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(ApiPerformanceMiddleware)
logger = logging.getLogger(__name__)
_message_scheduler_task: asyncio.Task | None = None

cors_origins = [
    origin.strip()
    for origin in settings.api_cors_allowed_origins.split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["http://localhost:5173"],
    allow_credentials=settings.api_cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1024)

app.include_router(api_router)


@app.on_event("startup")
async def startup_tasks() -> None:
    global _message_scheduler_task
    if settings.feature_message_scheduler and _message_scheduler_task is None:
        _message_scheduler_task = asyncio.create_task(message_scheduler_loop())
        logger.info("Started message scheduler task.")


@app.on_event("shutdown")
async def shutdown_tasks() -> None:
    global _message_scheduler_task
    task = _message_scheduler_task
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    _message_scheduler_task = None


@app.get("/health")
def health():
    monitor = get_scheduler_monitor_snapshot()
    return {
        "ok": True,
        "service": settings.app_name,
        "env": settings.app_env,
        "api_version": settings.api_version,
        "supabase_configured": bool(
            settings.supabase_url and settings.supabase_service_role_key
        ),
        "beds24_signature_required": bool(settings.beds24_webhook_secret),
        "message_scheduler_enabled": settings.feature_message_scheduler,
        "scheduled_dispatch_enabled": settings.scheduled_dispatch_enabled,
        "message_scheduler_monitor": {
            "running": bool(monitor.get("running")),
            "last_success_at": monitor.get("last_success_at"),
            "consecutive_failures": monitor.get("consecutive_failures", 0),
        },
    }


def _error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorBody(
            code=code,
            message=message,
            correlation_id=getattr(request.state, "correlation_id", "n/a"),
        )
    )
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    return _error_response(request, status_code=503, code="storage_unavailable", message=str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(request, status_code=500, code="internal_error", message=str(exc))
