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


def _reservation_row(**overrides) -> dict:
    row = {
        "id": "res-1",
        "property_id": "prop-1",
        "status": "confirmed",
        "check_in_date": "2024-03-05",
        "check_out_date": "2024-03-07",
        "num_guests": 2,
    }
    row.update(overrides)
    return row


def _owner_properties(monkeypatch, ids: list[str]) -> None:
    monkeypatch.setattr(
        "stayflow.api.deps.list_properties",
        lambda **_: [{"id": property_id} for property_id in ids],
    )


def test_reservation_list_contract(monkeypatch) -> None:
    captured: dict = {}

    def fake_list_reservations(*, filters, limit, offset, sort_by, sort_dir):
        captured.update({"filters": filters, "limit": limit, "offset": offset, "sort_dir": sort_dir})
        return [_reservation_row()], 3

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.reservations.list_reservations", fake_list_reservations)

    response = client.get(
        "/api/admin/reservations?limit=1&status=confirmed&sort_dir=asc",
        headers=_token_header(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 3
    assert body["has_more"] is True
    assert body["items"][0]["id"] == "res-1"
    assert captured["filters"]["status"] == "confirmed"
    assert captured["filters"]["property_ids"] is None
    assert captured["sort_dir"] == "asc"


def test_owner_reservation_list_is_limited_to_owned_properties(monkeypatch) -> None:
    captured: dict = {}

    def fake_list_reservations(*, filters, **_):
        captured.update(filters)
        return [], 0

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_owner_auth)
    _owner_properties(monkeypatch, ["prop-1", "prop-2"])
    monkeypatch.setattr("stayflow.api.routes.reservations.list_reservations", fake_list_reservations)

    response = client.get("/api/admin/reservations", headers=_token_header())

    assert response.status_code == 200
    assert captured["property_ids"] == ["prop-1", "prop-2"]


def test_owner_cannot_see_foreign_reservation(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_owner_auth)
    _owner_properties(monkeypatch, ["prop-1"])
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.get_reservation",
        lambda **_: _reservation_row(property_id="prop-9"),
    )

    response = client.get("/api/admin/reservations/res-1", headers=_token_header())

    assert response.status_code == 404
    assert response.json()["detail"] == "Reservation not found"


def test_create_reservation_schedules_messages(monkeypatch) -> None:
    saved: list = []
    captured: dict = {}

    def fake_create_reservation(*, payload):
        captured.update(payload)
        return _reservation_row(id="res-new")

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.reservations.create_reservation", fake_create_reservation)
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.on_reservation_saved",
        lambda row, previous=None: saved.append((row["id"], previous)),
    )

    response = client.post(
        "/api/admin/reservations",
        headers=_token_header(),
        json={
            "bookingName": "Aiko Tanaka",
            "checkInDate": "2024-03-05",
            "checkOutDate": "2024-03-07",
            "numGuests": 2,
            "propertyId": "prop-1",
        },
    )

    assert response.status_code == 200
    assert response.json()["reservation"]["id"] == "res-new"
    assert captured["checkInDate"] == "2024-03-05"
    assert captured["bookingName"] == "Aiko Tanaka"
    assert saved == [("res-new", None)]


def test_create_reservation_rejects_inverted_dates(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.post(
        "/api/admin/reservations",
        headers=_token_header(),
        json={"checkInDate": "2024-03-07", "checkOutDate": "2024-03-07"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "check_out_date must be after check_in_date."


def test_owner_cannot_create_reservation_for_foreign_property(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_owner_auth)
    _owner_properties(monkeypatch, ["prop-1"])

    response = client.post(
        "/api/admin/reservations",
        headers=_token_header(),
        json={"checkInDate": "2024-03-05", "checkOutDate": "2024-03-07", "propertyId": "prop-9"},
    )

    assert response.status_code == 403


def test_patch_reservation_passes_previous_row(monkeypatch) -> None:
    saved: list = []

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.reservations.get_reservation", lambda **_: _reservation_row())
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.update_reservation",
        lambda **_: _reservation_row(check_out_date="2024-03-08"),
    )
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.on_reservation_saved",
        lambda row, previous=None: saved.append((row["check_out_date"], previous["check_out_date"])),
    )

    response = client.patch(
        "/api/admin/reservations/res-1",
        headers=_token_header(),
        json={"checkOutDate": "2024-03-08"},
    )

    assert response.status_code == 200
    assert saved == [("2024-03-08", "2024-03-07")]


def test_patch_reservation_requires_fields(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)

    response = client.patch("/api/admin/reservations/res-1", headers=_token_header(), json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "No reservation fields provided for update."


def test_status_change_only_touches_schedule_on_cancel(monkeypatch) -> None:
    saved: list = []

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.reservations.get_reservation", lambda **_: _reservation_row())
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.update_reservation",
        lambda *, reservation_id, payload: _reservation_row(status=payload["status"]),
    )
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.on_reservation_saved",
        lambda row, previous=None: saved.append(row["status"]),
    )

    checked_in = client.patch(
        "/api/admin/reservations/res-1/status",
        headers=_token_header(),
        json={"status": "checked_in"},
    )
    cancelled = client.patch(
        "/api/admin/reservations/res-1/status",
        headers=_token_header(),
        json={"status": "cancelled"},
    )
    invalid = client.patch(
        "/api/admin/reservations/res-1/status",
        headers=_token_header(),
        json={"status": "inquiry"},
    )

    assert checked_in.status_code == 200
    assert cancelled.status_code == 200
    assert invalid.status_code == 422
    assert saved == ["cancelled"]


def test_reservation_services_toggle(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.reservations.get_reservation", lambda **_: _reservation_row())
    monkeypatch.setattr(
        "stayflow.api.routes.reservations.set_service_enabled",
        lambda *, reservation_id, service_key, enabled: {
            "id": "addon-1",
            "service_key": service_key,
            "admin_enabled": enabled,
        },
    )

    response = client.put(
        "/api/admin/reservations/res-1/services/late_checkout",
        headers=_token_header(),
        json={"enabled": True},
    )

    assert response.status_code == 200
    assert response.json()["addon"] == {"id": "addon-1", "service_key": "late_checkout", "admin_enabled": True}


def test_reservation_services_toggle_unknown_service(monkeypatch) -> None:
    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_admin_auth)
    monkeypatch.setattr("stayflow.api.routes.reservations.get_reservation", lambda **_: _reservation_row())
    monkeypatch.setattr("stayflow.api.routes.reservations.set_service_enabled", lambda **_: None)

    response = client.put(
        "/api/admin/reservations/res-1/services/spa",
        headers=_token_header(),
        json={"enabled": False},
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Guest service not found"


def test_today_stats_scope(monkeypatch) -> None:
    captured: dict = {}

    def fake_stats(*, property_ids):
        captured["property_ids"] = property_ids
        return {"today_arrivals": 2, "today_departures": 1, "in_house_guests": 4, "pending_today_checkins": 1}

    monkeypatch.setattr("stayflow.core.auth.verify_access_token", _mock_owner_auth)
    _owner_properties(monkeypatch, ["prop-1"])
    monkeypatch.setattr("stayflow.api.routes.reservations.today_dashboard_stats", fake_stats)

    response = client.get("/api/admin/reservations/stats/today", headers=_token_header())

    assert response.status_code == 200
    assert response.json()["today_arrivals"] == 2
    assert captured["property_ids"] == ["prop-1"]
