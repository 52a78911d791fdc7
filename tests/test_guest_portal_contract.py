import pytest
from fastapi.testclient import TestClient

from stayflow.main import app

client = TestClient(app)


def _reservation(**overrides) -> dict:
    row = {"id": "res-1", "status": "confirmed", "num_guests": 2, "check_in_date": "2024-03-05"}
    row.update(overrides)
    return row


def _portal(reservation: dict) -> dict:
    return {
        "reservation": reservation,
        "guests": [],
        "completion": {"is_complete": False, "required_guests": 2, "completed_guests": 0, "remaining_guests": 2},
        "property": {"name": "Hillside House"},
        "room": None,
        "services": [],
        "journey": {
            "steps": [
                {"key": "checkin", "status": "current"},
                {"key": "tax_payment", "status": "completed"},
                {"key": "access_available", "status": "pending"},
            ],
            "current_step": "checkin",
            "progress": 33,
        },
        "access": {
            "checkin_complete": False,
            "services_settled": True,
            "can_show_stay_info": False,
            "room_unlocked": False,
            "access_time": "15:00",
            "departure_time": "11:00",
        },
    }


def test_unknown_token_is_404(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: None)

    response = client.get("/api/guest/missing-token")

    assert response.status_code == 404
    assert response.json()["detail"] == "Reservation not found"


def test_guest_portal_contract(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr("stayflow.api.routes.guest.build_guest_portal", _portal)

    response = client.get("/api/guest/token-1")

    assert response.status_code == 200
    body = response.json()
    assert body["journey"]["current_step"] == "checkin"
    assert body["access"]["room_unlocked"] is False
    assert body["access"]["access_code"] is None


def test_checkin_saves_guest_and_reports_completion(monkeypatch) -> None:
    captured: dict = {}

    def fake_submit(*, reservation_id, guest_number, payload):
        captured.update({"reservation_id": reservation_id, "guest_number": guest_number, "payload": payload})
        return {"id": "guest-1", "guest_number": guest_number, "checkin_submitted_at": "2024-03-01T00:00:00Z"}

    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr("stayflow.api.routes.guest.submit_guest_checkin", fake_submit)
    monkeypatch.setattr(
        "stayflow.api.routes.guest.list_reservation_guests",
        lambda **_: [{"guest_number": 1, "checkin_submitted_at": "2024-03-01T00:00:00Z"}],
    )

    response = client.post(
        "/api/guest/token-1/checkin",
        json={"firstName": "Aiko", "lastName": "Tanaka", "agreementAccepted": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["guest"]["id"] == "guest-1"
    assert body["completion"] == {
        "is_complete": False,
        "required_guests": 2,
        "completed_guests": 1,
        "remaining_guests": 1,
    }
    assert captured["guest_number"] == 1
    assert captured["payload"]["firstName"] == "Aiko"
    assert "guestNumber" not in captured["payload"]


def test_primary_guest_must_accept_agreement(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())

    response = client.post("/api/guest/token-1/checkin", json={"firstName": "Aiko", "lastName": "Tanaka"})

    assert response.status_code == 400
    assert response.json()["detail"] == "The primary guest must accept the house agreement."


def test_guest_number_above_party_size_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())

    response = client.post(
        "/api/guest/token-1/checkin",
        json={"guestNumber": 3, "firstName": "Ren", "lastName": "Sato"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Guest number must be between 1 and 2."


def test_cancelled_reservation_cannot_check_in(monkeypatch) -> None:
    monkeypatch.setattr(
        "stayflow.api.routes.guest.get_reservation_by_token",
        lambda _token: _reservation(status="cancelled"),
    )

    response = client.post(
        "/api/guest/token-1/checkin",
        json={"firstName": "Aiko", "lastName": "Tanaka", "agreementAccepted": True},
    )

    assert response.status_code == 409


def test_guest_services_only_lists_enabled_addons(monkeypatch) -> None:
    captured: dict = {}

    def fake_addons(*, reservation_id, admin_enabled_only):
        captured["admin_enabled_only"] = admin_enabled_only
        return [
            {
                "id": "addon-1",
                "admin_enabled": True,
                "purchase_status": "pending",
                "guest_services": {"service_key": "accommodation_tax", "name": "Tax", "is_mandatory": True},
            }
        ]

    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr("stayflow.api.routes.guest.list_reservation_addons", fake_addons)

    response = client.get("/api/guest/token-1/services")

    assert response.status_code == 200
    body = response.json()
    assert captured["admin_enabled_only"] is True
    assert body["items"][0]["service_type"] == "accommodation_tax"
    assert body["items"][0]["payment_status"] == "pending"
    assert body["all_mandatory_settled"] is False


def test_guest_message_is_stored_as_incoming(monkeypatch) -> None:
    captured: dict = {}

    def fake_receive(*, thread_id, channel, content, origin_role):
        captured.update({"thread_id": thread_id, "content": content, "origin_role": origin_role})
        return {"id": "msg-1", "thread_id": thread_id, "origin_role": origin_role, "direction": "incoming", "content": content}

    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr(
        "stayflow.api.routes.guest.find_or_create_thread",
        lambda **_: {"id": "thread-1", "reservation_id": "res-1"},
    )
    monkeypatch.setattr("stayflow.api.routes.guest.receive_message", fake_receive)

    response = client.post("/api/guest/token-1/thread/messages", json={"content": "  What time is check-in?  "})

    assert response.status_code == 200
    assert response.json()["message"]["direction"] == "incoming"
    assert captured == {"thread_id": "thread-1", "content": "What time is check-in?", "origin_role": "guest"}


def test_guest_message_cannot_claim_another_channel(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr(
        "stayflow.api.routes.guest.receive_message",
        lambda **_: pytest.fail("message should not be stored"),
    )

    response = client.post(
        "/api/guest/token-1/thread/messages",
        json={"content": "Hello", "channel": "whatsapp"},
    )

    assert response.status_code == 422


def test_blank_guest_message_is_rejected() -> None:
    response = client.post("/api/guest/token-1/thread/messages", json={"content": "   "})

    assert response.status_code == 400
    assert response.json()["detail"] == "Message content is empty."


def test_guest_thread_lists_messages(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr(
        "stayflow.api.routes.guest.find_or_create_thread",
        lambda **_: {"id": "thread-1", "reservation_id": "res-1", "status": "open"},
    )
    monkeypatch.setattr(
        "stayflow.api.routes.guest.list_messages",
        lambda *, thread_id, limit, offset: [{"id": "msg-1", "thread_id": thread_id, "content": "Welcome!"}],
    )

    response = client.get("/api/guest/token-1/thread/messages")

    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["thread"]["id"] == "thread-1"


def test_access_read_marks_reservation(monkeypatch) -> None:
    marked: list = []
    monkeypatch.setattr("stayflow.api.routes.guest.get_reservation_by_token", lambda _token: _reservation())
    monkeypatch.setattr(
        "stayflow.api.routes.guest.mark_access_read",
        lambda *, reservation_id: marked.append(reservation_id),
    )

    response = client.post("/api/guest/token-1/access-read")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "reservation_id": "res-1"}
    assert marked == ["res-1"]
