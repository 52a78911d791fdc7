from fastapi.testclient import TestClient

from stayflow.core.auth import AuthContext
from stayflow.main import app

client = TestClient(app)


def _token_header(value: str = "token") -> dict[str, str]:
    return {"Authorization": f"Bearer {value}"}


def _mock_admin_auth(_: str) -> AuthContext:
    return AuthContext(user_id="admin-user", email="admin@example.com", role="admin", access_token="admin-token")


def _mock_owner_auth(_: str) -> AuthContext:
    return AuthContext(user_id="owner-1", email="owner@example.com", role="owner", access_token="owner-token")


def test_users_are_admin_only(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_owner_auth)

    response = client.get("/api/admin/users", headers=_token_header())

    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required."


def test_user_list_contract(monkeypatch) -> None:
    captured: dict = {}

    def fake_list_users(*, role, include_inactive, limit, offset):
        captured.update({"role": role, "include_inactive": include_inactive})
        return [{"id": "user-1", "email": "c@example.com", "role": "cleaner", "is_active": True}], 1

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.users.list_users", fake_list_users)

    response = client.get("/api/admin/users?role=cleaner", headers=_token_header())

    assert response.status_code == 200
    assert response.json()["items"][0]["role"] == "cleaner"
    assert captured == {"role": "cleaner", "include_inactive": False}


def test_create_user_keeps_only_sent_fields(monkeypatch) -> None:
    captured: dict = {}

    def fake_create_user(*, payload):
        captured.update(payload)
        return {"id": payload["id"], "email": payload["email"], "role": "guest"}

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.users.create_user", fake_create_user)

    response = client.post(
        "/api/admin/users",
        headers=_token_header(),
        json={"id": "user-2", "email": "new@example.com", "firstName": "Ren"},
    )

    assert response.status_code == 200
    assert response.json()["user"]["id"] == "user-2"
    assert captured == {"id": "user-2", "email": "new@example.com", "firstName": "Ren"}


def test_admin_cannot_deactivate_self(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.patch(
        "/api/admin/users/admin-user",
        headers=_token_header(),
        json={"isActive": False},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "You cannot deactivate your own account."


def test_admin_cannot_delete_self(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.delete("/api/admin/users/admin-user", headers=_token_header())

    assert response.status_code == 400
    assert response.json()["detail"] == "You cannot delete your own account."


def test_delete_user_is_soft(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr(
        "stayflow.api.routes.users.delete_user",
        lambda **_: {"id": "user-3", "is_active": False},
    )

    response = client.delete("/api/admin/users/user-3", headers=_token_header())

    assert response.status_code == 200
    assert response.json() == {"ok": True, "id": "user-3", "soft_deleted": True}


def test_unknown_user_is_404(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.users.get_user", lambda **_: None)

    response = client.get("/api/admin/users/user-404", headers=_token_header())

    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"
