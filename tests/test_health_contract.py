from types import SimpleNamespace

from fastapi.testclient import TestClient

from stayflow.core.auth import AuthContext
from stayflow.core.config import settings
from stayflow.main import app
from stayflow.observability.perf_metrics import LatencyRecorder, perf_metrics

client = TestClient(app)


def _failing_role_client():
    def table(_name):
        raise ConnectionError("connection refused")

    user = SimpleNamespace(id="user-1", email="user@example.com")
    return SimpleNamespace(
        auth=SimpleNamespace(get_user=lambda _token: SimpleNamespace(user=user)),
        table=table,
    )


def test_health_reports_scheduler_and_integrations(monkeypatch) -> None:
    monkeypatch.setattr(settings, "beds24_webhook_secret", "s3cret")
    monkeypatch.setattr(
        "stayflow.main.get_scheduler_monitor_snapshot",
        lambda: {"running": False, "last_success_at": "2024-03-01T00:00:00+00:00", "consecutive_failures": 2},
    )

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["service"] == "stayflow-api"
    assert body["beds24_signature_required"] is True
    assert body["message_scheduler_monitor"] == {
        "running": False,
        "last_success_at": "2024-03-01T00:00:00+00:00",
        "consecutive_failures": 2,
    }


def test_responses_carry_correlation_id() -> None:
    echoed = client.get("/health", headers={"x-correlation-id": "req-123"})
    generated = client.get("/health")

    assert echoed.headers["x-correlation-id"] == "req-123"
    assert generated.headers["x-correlation-id"]


def test_storage_outage_during_auth_uses_error_envelope(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.get_supabase_client", _failing_role_client)

    response = client.get(
        "/api/admin/properties",
        headers={"Authorization": "Bearer token", "x-correlation-id": "req-503"},
    )

    assert response.status_code == 503
    assert response.json() == {
        "error": {
            "code": "storage_unavailable",
            "message": "Failed to fetch user role.",
            "details": {},
            "correlation_id": "req-503",
        }
    }


def test_unhandled_errors_use_error_envelope(monkeypatch) -> None:
    def broken(**_):
        raise KeyError("owner_id")

    monkeypatch.setattr(
        "stayflow.core.auth.verify_access_token",
        lambda token: AuthContext(user_id="admin-user", email=None, role="admin", access_token=token),
    )
    monkeypatch.setattr("stayflow.api.routes.properties.list_properties", broken)
    lenient = TestClient(app, raise_server_exceptions=False)

    response = lenient.get("/api/admin/properties", headers={"Authorization": "Bearer token"})

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "internal_error"


def test_perf_snapshot_is_admin_only(monkeypatch) -> None:
    monkeypatch.setattr(
        "stayflow.core.auth.verify_access_token",
        lambda token: AuthContext(user_id="owner-1", email=None, role="owner", access_token=token),
    )

    response = client.get("/api/admin/dashboard/perf", headers={"Authorization": "Bearer token"})

    assert response.status_code == 403


def test_perf_snapshot_records_admin_routes(monkeypatch) -> None:
    perf_metrics.clear()
    monkeypatch.setattr(
        "stayflow.core.auth.verify_access_token",
        lambda token: AuthContext(user_id="admin-user", email=None, role="admin", access_token=token),
    )
    monkeypatch.setattr("stayflow.api.routes.users.user_stats", lambda: {"total": 1, "active": 1, "by_role": {}})

    stats = client.get("/api/admin/users/stats", headers={"Authorization": "Bearer token"})
    response = client.get("/api/admin/dashboard/perf", headers={"Authorization": "Bearer token"})

    assert "x-api-latency-ms" in stats.headers
    assert response.status_code == 200
    body = response.json()
    assert any(key.endswith("/admin/users/stats") for key in body["api"])
    assert "db" in body


def test_latency_recorder_keeps_a_rolling_window() -> None:
    recorder = LatencyRecorder(window=3)
    for duration in (50.0, 10.0, 20.0, 30.0):
        recorder.record_db("db.messages.list", duration)

    assert recorder.summary("db", "db.messages.list") == {
        "count": 3,
        "avg_ms": 20.0,
        "p50_ms": 20.0,
        "p95_ms": 30.0,
        "max_ms": 30.0,
    }
    assert recorder.summary("api", "GET /api/admin/users") is None
    assert recorder.snapshot()["api"] == {}
