from datetime import datetime, timezone
from typing import Any

from stayflow.integrations.supabase_client import (
    first_row,
    get_supabase_client,
    is_unique_violation,
    storage_failure,
)


def get_webhook_event(*, source: str, event_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("webhook_events")
            .select("id,processed,error")
            .eq("source", source)
            .eq("event_id", event_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch webhook event", exc) from exc
    return first_row(response)


def reclaim_failed_webhook_event(*, webhook_event_id: Any) -> dict[str, Any] | None:
    """Take over an event whose last attempt failed; ``None`` when another delivery got it first."""
    try:
        response = (
            get_supabase_client()
            .table("webhook_events")
            .update({"error": None, "processed_at": None})
            .eq("id", webhook_event_id)
            .eq("processed", False)
            .not_.is_("error", "null")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update webhook event", exc) from exc
    return first_row(response)


def log_webhook_event(*, source: str, event_type: str, event_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    """Record an incoming event; ``None`` when another delivery already logged it."""
    row = {
        "source": source,
        "event_type": event_type,
        "event_id": event_id,
        "payload": payload,
        "processed": False,
    }
    try:
        response = get_supabase_client().table("webhook_events").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        if is_unique_violation(exc):
            return None
        raise storage_failure("log webhook event", exc) from exc
    return first_row(response)


def mark_webhook_event_processed(*, webhook_event_id: Any, error: str | None = None) -> None:
    updates = {
        "processed": error is None,
        "processed_at": datetime.now(timezone.utc).isoformat(),
        "error": error,
    }
    try:
        get_supabase_client().table("webhook_events").update(updates).eq("id", webhook_event_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update webhook event", exc) from exc
