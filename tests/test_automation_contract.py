from datetime import datetime, timezone

from fastapi.testclient import TestClient

from stayflow.core.auth import AuthContext
from stayflow.main import app
from stayflow.scheduling.runner import SchedulerBusyError
from stayflow.schemas.common import DispatchSummary, GenerationSummary

client = TestClient(app)


def _token_header(value: str = "token") -> dict[str, str]:
    return {"Authorization": f"Bearer {value}"}


def _mock_admin_auth(_: str) -> AuthContext:
    return AuthContext(user_id="admin-user", email="admin@example.com", role="admin", access_token="admin-token")


def _mock_owner_auth(_: str) -> AuthContext:
    return AuthContext(user_id="owner-1", email="owner@example.com", role="owner", access_token="owner-token")


def _rule(**overrides) -> dict:
    row = {
        "id": "rule-1",
        "code": "WELCOME",
        "type": "ON_CREATE_DELAY_MIN",
        "backfill": "none",
        "delay_minutes": 0,
        "templates": [],
    }
    row.update(overrides)
    return row


def test_automation_is_admin_only(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_owner_auth)

    response = client.get("/api/admin/automation/rules", headers=_token_header())

    assert response.status_code == 403


def test_create_rule_contract(monkeypatch) -> None:
    captured: dict = {}

    def fake_create(*, payload):
        captured.update(payload)
        return _rule(code=payload["code"], type=payload["type"])

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.automation.create_message_rule", fake_create)

    response = client.post(
        "/api/admin/automation/rules",
        headers=_token_header(),
        json={
            "code": "PRE_ARRIVAL",
            "type": "BEFORE_ARRIVAL_DAYS_AT_TIME",
            "days": 1,
            "atTime": "10:00",
            "backfill": "skip_if_past",
        },
    )

    assert response.status_code == 200
    assert response.json()["rule"]["code"] == "PRE_ARRIVAL"
    assert captured["type"] == "BEFORE_ARRIVAL_DAYS_AT_TIME"
    assert captured["atTime"] == "10:00"


def test_rule_with_unknown_type_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.post(
        "/api/admin/automation/rules",
        headers=_token_header(),
        json={"code": "X", "type": "EVERY_MONDAY"},
    )

    assert response.status_code == 422


def test_rule_with_bad_clock_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.post(
        "/api/admin/automation/rules",
        headers=_token_header(),
        json={"code": "X", "type": "BEFORE_ARRIVAL_DAYS_AT_TIME", "days": 1, "atTime": "10am"},
    )

    assert response.status_code == 422


def test_link_template_requires_existing_template(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.automation.get_message_rule", lambda **_: _rule())
    monkeypatch.setattr("stayflow.api.routes.automation.get_message_template", lambda **_: None)

    response = client.post(
        "/api/admin/automation/rules/rule-1/templates",
        headers=_token_header(),
        json={"templateId": "tpl-404"},
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Message template not found"


def test_link_template(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.automation.get_message_rule", lambda **_: _rule())
    monkeypatch.setattr("stayflow.api.routes.automation.get_message_template", lambda **_: {"id": "tpl-1"})
    monkeypatch.setattr(
        "stayflow.api.routes.automation.link_rule_template",
        lambda *, rule_id, template_id, is_primary, priority: {
            "rule_id": rule_id,
            "template_id": template_id,
            "is_primary": is_primary,
        },
    )

    response = client.post(
        "/api/admin/automation/rules/rule-1/templates",
        headers=_token_header(),
        json={"templateId": "tpl-1", "isPrimary": True},
    )

    assert response.status_code == 200
    assert response.json()["link"] == {"rule_id": "rule-1", "template_id": "tpl-1", "is_primary": True}


def test_template_channel_is_validated(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.post(
        "/api/admin/automation/templates",
        headers=_token_header(),
        json={"name": "Welcome", "channel": "fax", "content": "Hi {{guest_name}}"},
    )

    assert response.status_code == 422


def test_schedule_preview(monkeypatch) -> None:
    run_at = datetime(2024, 3, 4, 1, 0, tzinfo=timezone.utc)
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr(
        "stayflow.api.routes.automation.preview_for_reservation",
        lambda **_: [
            {
                "rule_id": "rule-1",
                "rule_code": "PRE_ARRIVAL",
                "rule_type": "BEFORE_ARRIVAL_DAYS_AT_TIME",
                "backfill": "none",
                "scheduled_for": run_at,
                "run_at": run_at,
                "action": "schedule",
                "will_create": True,
                "status": "pending",
                "channel": "email",
                "language": "en",
                "template_id": "tpl-1",
            }
        ],
    )

    response = client.get("/api/admin/automation/reservations/res-1/preview", headers=_token_header())

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["items"][0]["action"] == "schedule"


def test_schedule_preview_unknown_reservation(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.automation.preview_for_reservation", lambda **_: None)

    response = client.get("/api/admin/automation/reservations/res-404/preview", headers=_token_header())

    assert response.status_code == 404


def test_regenerate_schedule(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr(
        "stayflow.api.routes.automation.regenerate_for_reservation",
        lambda **_: {"cancelled": 2, "summary": GenerationSummary(reservations=1, scheduled=2)},
    )

    response = client.post("/api/admin/automation/reservations/res-1/regenerate", headers=_token_header())

    assert response.status_code == 200
    body = response.json()
    assert body["cancelled"] == 2
    assert body["summary"]["scheduled"] == 2


def test_manual_dispatch(monkeypatch) -> None:
    captured: dict = {}

    def fake_dispatch(*, limit):
        captured["limit"] = limit
        return DispatchSummary(due=2, sent=1, failed=1)

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.automation.dispatch_due_messages", fake_dispatch)

    response = client.post("/api/admin/automation/dispatch?limit=20", headers=_token_header())

    assert response.status_code == 200
    assert response.json()["sent"] == 1
    assert captured["limit"] == 20


def test_scheduler_monitor(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr(
        "stayflow.api.routes.automation.get_scheduler_monitor_snapshot",
        lambda: {
            "enabled": False,
            "dispatch_enabled": False,
            "running": False,
            "interval_sec": 60,
            "consecutive_failures": 0,
        },
    )

    response = client.get("/api/admin/automation/scheduler/monitor", headers=_token_header())

    assert response.status_code == 200
    assert response.json()["interval_sec"] == 60
    assert response.json()["last_dispatch"] is None


def test_manual_scheduler_run_conflicts_with_a_running_tick(monkeypatch) -> None:
    def busy():
        raise SchedulerBusyError("Message scheduler is already running.")

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.automation.run_message_scheduler_once_now", busy)

    response = client.post("/api/admin/automation/scheduler/run", headers=_token_header())

    assert response.status_code == 409
    assert response.json()["detail"] == "Message scheduler is already running."
