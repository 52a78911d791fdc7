"""Guest chat session with optimistic sends over a Supabase realtime channel.

The session keeps the message list a guest sees. Sent messages appear at once
under a ``temp_<ms>`` id and are replaced by the stored row either when the
REST call returns or when the realtime INSERT for the same text arrives,
whichever comes first.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Awaitable, Callable

from supabase import AsyncClient, acreate_client

from stayflow.core.config import settings
from stayflow.core.timeutil import parse_timestamp
from stayflow.services.messaging import message_preview, receive_message

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp_"

Transport = Callable[[str], Awaitable[dict[str, Any]]]


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_temp_id(message_id: Any) -> bool:
    return str(message_id or "").startswith(TEMP_PREFIX)


class GuestChatSession:
    def __init__(
        self,
        *,
        thread_id: str,
        transport: Transport,
        thread: dict[str, Any] | None = None,
        match_window_sec: int | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.thread_id = str(thread_id)
        self.thread: dict[str, Any] = dict(thread or {"id": self.thread_id})
        self.messages: list[dict[str, Any]] = []
        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self._transport = transport
        self._clock = clock
        self._match_window = timedelta(seconds=match_window_sec or settings.guest_chat_match_window_sec)
        self._processed_ids: set[str] = set()

    # Connection lifecycle

    def mark_connecting(self) -> None:
        self.state = ConnectionState.CONNECTING
        self.last_error = None

    def mark_subscribed(self) -> None:
        self.state = ConnectionState.SUBSCRIBED

    def mark_disconnected(self, error: str | None = None) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.last_error = error

    # Message list

    def load(self, messages: list[dict[str, Any]]) -> None:
        self.messages = [dict(message) for message in messages]
        self._processed_ids = {str(message["id"]) for message in self.messages if message.get("id")}

    def _index_of(self, message_id: Any) -> int | None:
        wanted = str(message_id)
        for index, message in enumerate(self.messages):
            if str(message.get("id")) == wanted:
                return index
        return None

    def _touch_thread(self, message: dict[str, Any]) -> None:
        self.thread["last_message_at"] = message.get("created_at")
        self.thread["last_message_preview"] = message_preview(message.get("content") or "")

    async def send(self, content: str) -> dict[str, Any] | None:
        """Post a guest message, showing it immediately; ``None`` for blank input."""
        text = (content or "").strip()
        if not text:
            return None

        now = self._clock()
        temp_id = f"{TEMP_PREFIX}{int(now.timestamp() * 1000)}"
        self.messages.append(
            {
                "id": temp_id,
                "thread_id": self.thread_id,
                "content": text,
                "channel": "inapp",
                "direction": "outgoing",
                "origin_role": "guest",
                "created_at": now.isoformat(),
                "message_deliveries": [{"status": "sending", "channel": "inapp"}],
            }
        )

        try:
            confirmed = await self._transport(text)
        except Exception:
            index = self._index_of(temp_id)
            if index is not None:
                self.messages.pop(index)
            raise

        confirmed_id = str(confirmed.get("id"))
        self._processed_ids.add(confirmed_id)
        index = self._index_of(temp_id)
        if self._index_of(confirmed_id) is not None:
            # The realtime INSERT got here first.
            if index is not None:
                self.messages.pop(index)
        elif index is not None:
            self.messages[index] = dict(confirmed)
        else:
            self.messages.append(dict(confirmed))
        self._touch_thread(confirmed)
        return confirmed

    def _matching_temp(self, message: dict[str, Any]) -> int | None:
        created = parse_timestamp(message.get("created_at")) or self._clock()
        candidates = []
        for index, existing in enumerate(self.messages):
            if not is_temp_id(existing.get("id")):
                continue
            if (
                existing.get("content") != message.get("content")
                or str(existing.get("thread_id")) != str(message.get("thread_id"))
                or existing.get("origin_role") != message.get("origin_role")
            ):
                continue
            sent_at = parse_timestamp(existing.get("created_at"))
            if sent_at is None or abs(created - sent_at) > self._match_window:
                continue
            candidates.append((sent_at, index))
        return min(candidates)[1] if candidates else None

    def handle_insert(self, message: dict[str, Any]) -> bool:
        """Apply a realtime INSERT; returns False when it was already known."""
        if not message.get("id"):
            return False
        message_id = str(message["id"])
        if message_id in self._processed_ids or self._index_of(message_id) is not None:
            self._processed_ids.add(message_id)
            return False
        self._processed_ids.add(message_id)

        temp_index = self._matching_temp(message)
        if temp_index is not None:
            self.messages[temp_index] = dict(message)
        else:
            self.messages.append(dict(message))
        self._touch_thread(message)
        return True

    def handle_update(self, message: dict[str, Any]) -> bool:
        index = self._index_of(message.get("id"))
        if index is None:
            return False
        self.messages[index] = {**self.messages[index], **message}
        return True

    def handle_delivery_update(self, delivery: dict[str, Any]) -> bool:
        index = self._index_of(delivery.get("message_id"))
        if index is None:
            return False
        message = self.messages[index]
        deliveries = list(message.get("message_deliveries") or [])
        for position, existing in enumerate(deliveries):
            if _same_delivery(existing, delivery):
                deliveries[position] = {**existing, **delivery}
                break
        else:
            deliveries.append(dict(delivery))
        self.messages[index] = {**message, "message_deliveries": deliveries}
        return True


def _same_delivery(existing: dict[str, Any], delivery: dict[str, Any]) -> bool:
    # One message can have a delivery per channel; ids win when both sides carry one.
    if existing.get("id") is not None and delivery.get("id") is not None:
        return existing["id"] == delivery["id"]
    return existing.get("message_id") == delivery.get("message_id")


def service_transport(*, thread_id: str, channel: str = "inapp") -> Transport:
    """Transport that stores guest messages through the service layer."""

    async def _post(content: str) -> dict[str, Any]:
        return await asyncio.to_thread(
            receive_message,
            thread_id=thread_id,
            channel=channel,
            content=content,
            origin_role="guest",
        )

    return _post


def record_from_payload(payload: Any) -> dict[str, Any]:
    """Row carried by a postgres_changes payload, across realtime client versions."""
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return {}
    record = data.get("record") or data.get("new") or {}
    return dict(record) if isinstance(record, dict) else {}


class SupabaseGuestChatChannel:
    """Subscribes a session to ``messages`` and ``message_deliveries`` changes for one thread."""

    def __init__(self, session: GuestChatSession, *, client: AsyncClient | None = None) -> None:
        self.session = session
        self._client = client
        self._channel = None

    @property
    def channel_name(self) -> str:
        return f"guest_messages_thread_{self.session.thread_id}"

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            key = settings.supabase_anon_key or settings.supabase_service_role_key
            if not (settings.supabase_url and key):
                raise RuntimeError("Supabase integration not configured.")
            self._client = await acreate_client(settings.supabase_url, key)
        return self._client

    def _on_status(self, status: Any, error: Exception | None = None) -> None:
        value = str(getattr(status, "value", status)).upper()
        logger.info("Guest chat channel %s status: %s", self.channel_name, value)
        if value == "SUBSCRIBED":
            self.session.mark_subscribed()
        elif value in {"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"}:
            self.session.mark_disconnected(str(error) if error else value.lower())

    async def connect(self) -> None:
        self.session.mark_connecting()
        try:
            client = await self._get_client()
            thread_filter = f"thread_id=eq.{self.session.thread_id}"
            channel = client.channel(self.channel_name)
            channel.on_postgres_changes(
                "INSERT",
                schema="public",
                table="messages",
                filter=thread_filter,
                callback=lambda payload: self.session.handle_insert(record_from_payload(payload)),
            )
            channel.on_postgres_changes(
                "UPDATE",
                schema="public",
                table="messages",
                filter=thread_filter,
                callback=lambda payload: self.session.handle_update(record_from_payload(payload)),
            )
            channel.on_postgres_changes(
                "UPDATE",
                schema="public",
                table="message_deliveries",
                callback=lambda payload: self.session.handle_delivery_update(record_from_payload(payload)),
            )
            await channel.subscribe(self._on_status)
        except Exception as exc:
            self.session.mark_disconnected(str(exc))
            raise
        self._channel = channel

    async def close(self) -> None:
        if self._channel is not None and self._client is not None:
            await self._client.remove_channel(self._channel)
        self._channel = None
        self.session.mark_disconnected()
