import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from stayflow.core.config import settings
from stayflow.integrations.supabase_client import (
    first_row,
    get_supabase_client,
    rows_of,
    storage_failure,
    timed_execute,
)

logger = logging.getLogger(__name__)

THREAD_STATUSES = {"open", "closed", "archived"}
ORIGIN_ROLES = {"guest", "host", "system", "assistant"}

MESSAGE_SELECT = """
    *,
    message_deliveries(*)
"""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def message_preview(content: str, limit: int | None = None) -> str:
    limit = limit or settings.guest_message_preview_length
    text = str(content or "")
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def get_thread(*, thread_id: str) -> dict[str, Any] | None:
    try:
        response = get_supabase_client().table("message_threads").select("*").eq("id", thread_id).limit(1).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch thread", exc) from exc
    return first_row(response)


def get_thread_for_reservation(*, reservation_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("message_threads")
            .select("*")
            .eq("reservation_id", reservation_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch thread", exc) from exc
    return first_row(response)


def list_threads(
    *,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    try:
        query = get_supabase_client().table("message_threads").select("*", count="exact")
        if status:
            query = query.eq("status", status)
        response = timed_execute(
            "db.message_threads.list",
            lambda: query.order("last_message_at", desc=True).range(offset, offset + limit - 1).execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch threads", exc) from exc
    return rows_of(response), int(response.count or 0)


def update_thread_status(*, thread_id: str, status: str) -> dict[str, Any] | None:
    if status not in THREAD_STATUSES:
        raise ValueError(f"Unsupported thread status '{status}'.")
    try:
        response = (
            get_supabase_client()
            .table("message_threads")
            .update({"status": status, "updated_at": _utc_now_iso()})
            .eq("id", thread_id)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update thread status", exc) from exc
    return first_row(response)


def find_or_create_thread(*, reservation_id: str, subject: str | None = None) -> dict[str, Any]:
    existing = get_thread_for_reservation(reservation_id=reservation_id)
    if existing:
        if existing.get("status") != "open":
            logger.info("Reopening %s thread %s", existing.get("status"), existing.get("id"))
            update_thread_status(thread_id=existing["id"], status="open")
            existing["status"] = "open"
        return existing

    row = {"reservation_id": reservation_id, "status": "open"}
    if subject:
        row["subject"] = subject
    try:
        response = get_supabase_client().table("message_threads").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create thread", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create thread", RuntimeError("insert returned no rows"))
    return created


def touch_thread(*, thread_id: str, content: str) -> None:
    now = _utc_now_iso()
    get_supabase_client().table("message_threads").update(
        {
            "last_message_at": now,
            "last_message_preview": message_preview(content),
            "updated_at": now,
        }
    ).eq("id", thread_id).execute()


def list_messages(*, thread_id: str, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    try:
        response = timed_execute(
            "db.messages.list",
            lambda: get_supabase_client()
            .table("messages")
            .select(MESSAGE_SELECT)
            .eq("thread_id", thread_id)
            .order("created_at")
            .range(offset, offset + limit - 1)
            .execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch messages", exc) from exc
    return rows_of(response)


def _store_message(client: Any, message_row: dict[str, Any], delivery_row: dict[str, Any]) -> dict[str, Any]:
    message = first_row(client.table("messages").insert(message_row).execute())
    if not message:
        raise RuntimeError("insert returned no rows")
    try:
        client.table("message_deliveries").insert({**delivery_row, "message_id": message["id"]}).execute()
    except Exception:
        # A message without its delivery row would be stored twice when the sender retries.
        client.table("messages").delete().eq("id", message["id"]).execute()
        raise
    return message


def _touch_thread_quietly(*, thread_id: str, content: str) -> None:
    try:
        touch_thread(thread_id=thread_id, content=content)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to update thread %s preview: %s", thread_id, exc)


def send_message(
    *,
    thread_id: str,
    channel: str,
    content: str,
    origin_role: str = "host",
    parent_message_id: str | None = None,
) -> dict[str, Any]:
    client = get_supabase_client()
    try:
        message = _store_message(
            client,
            {
                "thread_id": thread_id,
                "parent_message_id": parent_message_id,
                "origin_role": origin_role,
                "direction": "outgoing",
                "channel": channel,
                "content": content,
            },
            {"channel": channel, "status": "queued", "queued_at": _utc_now_iso()},
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("send message", exc) from exc
    _touch_thread_quietly(thread_id=thread_id, content=content)
    return message


def receive_message(
    *,
    thread_id: str,
    channel: str,
    content: str,
    origin_role: str = "guest",
    provider_message_id: str | None = None,
) -> dict[str, Any]:
    """Store an incoming message; returns ``{"duplicate": True}`` for a known provider id."""
    client = get_supabase_client()
    try:
        if provider_message_id:
            seen = first_row(
                client.table("message_deliveries")
                .select("id")
                .eq("channel", channel)
                .eq("provider_message_id", provider_message_id)
                .limit(1)
                .execute()
            )
            if seen:
                return {"duplicate": True}

        thread = get_thread(thread_id=thread_id)
        if thread and thread.get("status") != "open":
            update_thread_status(thread_id=thread_id, status="open")

        now = _utc_now_iso()
        message = _store_message(
            client,
            {
                "thread_id": thread_id,
                "origin_role": origin_role,
                "direction": "incoming",
                "channel": channel,
                "content": content,
                "sent_at": now,
            },
            {
                "channel": channel,
                "provider_message_id": provider_message_id,
                "status": "delivered",
                "delivered_at": now,
            },
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("receive message", exc) from exc
    _touch_thread_quietly(thread_id=thread_id, content=content)
    return message


def mark_thread_read(*, thread_id: str, direction: str = "incoming") -> int:
    client = get_supabase_client()
    try:
        unread = rows_of(
            client.table("messages")
            .select("id,message_deliveries!inner(status)")
            .eq("thread_id", thread_id)
            .eq("direction", direction)
            .neq("message_deliveries.status", "read")
            .execute()
        )
        message_ids = [row["id"] for row in unread]
        if message_ids:
            client.table("message_deliveries").update({"status": "read", "read_at": _utc_now_iso()}).in_(
                "message_id", message_ids
            ).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("mark messages as read", exc) from exc
    return len(message_ids)


def thread_stats(*, thread_id: str) -> dict[str, int]:
    try:
        response = (
            get_supabase_client()
            .table("messages")
            .select("origin_role,direction")
            .eq("thread_id", thread_id)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch thread statistics", exc) from exc

    rows = rows_of(response)
    roles = Counter(row.get("origin_role") for row in rows)
    directions = Counter(row.get("direction") for row in rows)
    return {
        "total_messages": len(rows),
        "guest_messages": roles.get("guest", 0),
        "host_messages": roles.get("host", 0),
        "system_messages": roles.get("system", 0),
        "assistant_messages": roles.get("assistant", 0),
        "incoming": directions.get("incoming", 0),
        "outgoing": directions.get("outgoing", 0),
    }
