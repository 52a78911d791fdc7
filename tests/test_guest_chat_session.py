import asyncio
from datetime import datetime, timezone

import pytest

from stayflow.realtime import guest_chat
from stayflow.realtime.guest_chat import (
    ConnectionState,
    GuestChatSession,
    SupabaseGuestChatChannel,
    is_temp_id,
    record_from_payload,
)

NOW = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)


def _stored(message_id: str, content: str, created_at: str = "2024-03-01T00:00:01+00:00") -> dict:
    return {
        "id": message_id,
        "thread_id": "thread-1",
        "content": content,
        "origin_role": "guest",
        "direction": "incoming",
        "created_at": created_at,
    }


def _session(transport) -> GuestChatSession:
    return GuestChatSession(thread_id="thread-1", transport=transport, match_window_sec=10, clock=lambda: NOW)


def test_send_shows_temp_message_then_confirms() -> None:
    seen_during_send: list = []

    async def transport(content):
        seen_during_send.extend(message["id"] for message in session.messages)
        return _stored("msg-1", content)

    session = _session(transport)
    confirmed = asyncio.run(session.send("  Hello there  "))

    assert seen_during_send == ["temp_1709251200000"]
    assert confirmed["id"] == "msg-1"
    assert [message["id"] for message in session.messages] == ["msg-1"]
    assert session.thread["last_message_preview"] == "Hello there"


def test_blank_send_is_ignored() -> None:
    async def transport(_content):
        raise AssertionError("transport should not be called")

    session = _session(transport)

    assert asyncio.run(session.send("   ")) is None
    assert session.messages == []


def test_failed_send_removes_temp_message() -> None:
    async def transport(_content):
        raise RuntimeError("Failed to receive message.")

    session = _session(transport)

    with pytest.raises(RuntimeError):
        asyncio.run(session.send("Hello"))
    assert session.messages == []


def test_realtime_insert_arriving_first_replaces_temp_once() -> None:
    async def transport(content):
        row = _stored("msg-1", content)
        assert session.handle_insert(row) is True
        return row

    session = _session(transport)
    asyncio.run(session.send("Hello"))

    assert [message["id"] for message in session.messages] == ["msg-1"]


def test_realtime_insert_after_confirmation_is_ignored() -> None:
    async def transport(content):
        return _stored("msg-1", content)

    session = _session(transport)
    asyncio.run(session.send("Hello"))

    assert session.handle_insert(_stored("msg-1", "Hello")) is False
    assert len(session.messages) == 1


def test_insert_outside_match_window_does_not_replace_temp() -> None:
    session = _session(None)
    session.messages.append(
        {
            "id": "temp_1",
            "thread_id": "thread-1",
            "content": "Hello",
            "origin_role": "guest",
            "created_at": NOW.isoformat(),
        }
    )

    session.handle_insert(_stored("msg-9", "Hello", created_at="2024-03-01T00:05:00+00:00"))

    assert [message["id"] for message in session.messages] == ["temp_1", "msg-9"]


def test_insert_from_host_is_appended() -> None:
    session = _session(None)
    session.load([_stored("msg-1", "Hello")])

    added = session.handle_insert({**_stored("msg-2", "Welcome!"), "origin_role": "host", "direction": "outgoing"})

    assert added is True
    assert [message["id"] for message in session.messages] == ["msg-1", "msg-2"]
    assert session.thread["last_message_preview"] == "Welcome!"


def test_loaded_messages_are_not_duplicated() -> None:
    session = _session(None)
    session.load([_stored("msg-1", "Hello")])

    assert session.handle_insert(_stored("msg-1", "Hello")) is False
    assert len(session.messages) == 1


def test_update_merges_into_existing_message() -> None:
    session = _session(None)
    session.load([_stored("msg-1", "Hello")])

    assert session.handle_update({"id": "msg-1", "content": "Hello!"}) is True
    assert session.handle_update({"id": "msg-404", "content": "?"}) is False
    assert session.messages[0]["content"] == "Hello!"
    assert session.messages[0]["origin_role"] == "guest"


def test_delivery_update_merges_status() -> None:
    session = _session(None)
    session.load([{**_stored("msg-1", "Hello"), "message_deliveries": [{"id": "d-1", "message_id": "msg-1", "status": "delivered"}]}])

    session.handle_delivery_update({"id": "d-1", "message_id": "msg-1", "status": "read"})

    assert session.messages[0]["message_deliveries"] == [{"id": "d-1", "message_id": "msg-1", "status": "read"}]


def test_delivery_update_keeps_other_channel_deliveries() -> None:
    deliveries = [
        {"id": "d-1", "message_id": "msg-1", "channel": "inapp", "status": "delivered"},
        {"id": "d-2", "message_id": "msg-1", "channel": "email", "status": "queued"},
    ]
    session = _session(None)
    session.load([{**_stored("msg-1", "Hello"), "message_deliveries": deliveries}])

    session.handle_delivery_update({"id": "d-2", "message_id": "msg-1", "status": "sent"})
    session.handle_delivery_update({"id": "d-3", "message_id": "msg-1", "channel": "sms", "status": "queued"})

    assert [(row["id"], row["status"]) for row in session.messages[0]["message_deliveries"]] == [
        ("d-1", "delivered"),
        ("d-2", "sent"),
        ("d-3", "queued"),
    ]


def test_service_transport_stores_guest_message(monkeypatch) -> None:
    captured: dict = {}

    def fake_receive(**kwargs):
        captured.update(kwargs)
        return _stored("msg-1", kwargs["content"])

    monkeypatch.setattr(guest_chat, "receive_message", fake_receive)
    transport = guest_chat.service_transport(thread_id="thread-1")

    row = asyncio.run(transport("Hello"))

    assert row["id"] == "msg-1"
    assert captured == {"thread_id": "thread-1", "channel": "inapp", "content": "Hello", "origin_role": "guest"}


def test_record_from_payload_shapes() -> None:
    assert record_from_payload({"data": {"record": {"id": "msg-1"}}}) == {"id": "msg-1"}
    assert record_from_payload({"new": {"id": "msg-2"}}) == {"id": "msg-2"}
    assert record_from_payload("noise") == {}
    assert is_temp_id("temp_123") is True
    assert is_temp_id("msg-1") is False


class _FakeChannel:
    def __init__(self) -> None:
        self.handlers: list = []

    def on_postgres_changes(self, event, *, schema, table, callback, filter=None):
        self.handlers.append((event, table, filter, callback))
        return self

    async def subscribe(self, callback):
        callback("SUBSCRIBED")
        return self


class _FakeClient:
    def __init__(self) -> None:
        self.channels: dict = {}
        self.removed: list = []

    def channel(self, name):
        self.channels[name] = _FakeChannel()
        return self.channels[name]

    async def remove_channel(self, channel):
        self.removed.append(channel)


def test_channel_routes_realtime_events_into_session() -> None:
    session = _session(None)
    client = _FakeClient()
    channel = SupabaseGuestChatChannel(session, client=client)

    async def scenario():
        await channel.connect()
        fake = client.channels["guest_messages_thread_thread-1"]
        insert = next(handler for handler in fake.handlers if handler[0] == "INSERT")
        assert insert[2] == "thread_id=eq.thread-1"
        insert[3]({"data": {"record": _stored("msg-1", "Hi")}})
        assert session.state is ConnectionState.SUBSCRIBED
        await channel.close()

    asyncio.run(scenario())

    assert [message["id"] for message in session.messages] == ["msg-1"]
    assert len(client.removed) == 1
    assert session.state is ConnectionState.DISCONNECTED


def test_channel_error_marks_session_disconnected() -> None:
    session = _session(None)
    channel = SupabaseGuestChatChannel(session, client=_FakeClient())

    channel._on_status("CHANNEL_ERROR", RuntimeError("socket closed"))

    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_error == "socket closed"
