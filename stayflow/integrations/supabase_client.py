import logging
from functools import lru_cache
from time import perf_counter
from typing import Any

from supabase import Client, create_client

from stayflow.core.config import settings
from stayflow.observability.perf_metrics import perf_metrics

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class StorageError(RuntimeError):
    """Storage failure with a caller-safe message; detail goes to the log only."""


def _can_connect() -> bool:
    return bool(settings.supabase_url and settings.supabase_service_role_key)


def _describe(exc: Exception) -> str:
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    parts = [str(message).strip()]
    for label in ("code", "details", "hint"):
        value = getattr(exc, label, None)
        if value:
            parts.append(f"{label}={value}")
    return " ".join(parts)


def storage_failure(action: str, exc: Exception) -> StorageError:
    logger.error("Failed to %s: %s", action, _describe(exc), exc_info=exc)
    return StorageError(f"Failed to {action}.")


def is_unique_violation(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if code is not None:
        return str(code) == UNIQUE_VIOLATION
    return "duplicate key" in str(exc).lower()


def timed_execute(metric_key: str, operation):
    start = perf_counter()
    try:
        return operation()
    finally:
        perf_metrics.record_db(metric_key, (perf_counter() - start) * 1000)


def rows_of(response) -> list[dict[str, Any]]:
    return list(getattr(response, "data", None) or [])


def first_row(response) -> dict[str, Any] | None:
    rows = rows_of(response)
    return rows[0] if rows else None


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    if not _can_connect():
        raise RuntimeError("Supabase integration not configured.")
    return create_client(settings.supabase_url, settings.supabase_service_role_key)
