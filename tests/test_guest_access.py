from datetime import datetime, timezone

import pytest

from stayflow.guest import access

BEFORE_UNLOCK = datetime(2024, 3, 5, 6, 59, tzinfo=timezone.utc)
AT_UNLOCK = datetime(2024, 3, 5, 7, 0, tzinfo=timezone.utc)


def _reservation(**overrides) -> dict:
    row = {"id": "res-1", "check_in_date": "2024-03-05", "check_out_date": "2024-03-07", "num_guests": 1}
    row.update(overrides)
    return row


def _property(**overrides) -> dict:
    row = {
        "id": "prop-1",
        "name": "Hillside House",
        "timezone": "Asia/Tokyo",
        "access_time": "16:00",
        "departure_time": "10:00",
        "wifi_name": "hillside",
        "wifi_password": "secret",
        "check_in_instructions": "Key box by the door",
    }
    row.update(overrides)
    return row


def _service(*, mandatory: bool, status: str, **extra) -> dict:
    return {"service_type": "tax", "is_mandatory": mandatory, "payment_status": status, **extra}


def test_unlock_time_uses_property_timezone_and_access_time() -> None:
    unlocks = access.unlock_time(_reservation(), _property(), "16:00")
    assert unlocks == AT_UNLOCK


def test_room_stays_locked_until_access_time() -> None:
    kwargs = {"checkin_complete": True}
    unit = {"access_code": "4821", "access_instructions": "Door 3"}

    locked = access.access_state(_reservation(), _property(), unit, [], now=BEFORE_UNLOCK, **kwargs)
    unlocked = access.access_state(_reservation(), _property(), unit, [], now=AT_UNLOCK, **kwargs)

    assert locked["can_show_stay_info"] is True
    assert locked["room_unlocked"] is False
    assert locked["access_code"] is None
    assert unlocked["room_unlocked"] is True
    assert unlocked["access_code"] == "4821"


def test_unsettled_mandatory_service_blocks_stay_info() -> None:
    services = [_service(mandatory=True, status="pending")]

    state = access.access_state(
        _reservation(), _property(), {}, services, checkin_complete=True, now=AT_UNLOCK
    )

    assert state["services_settled"] is False
    assert state["can_show_stay_info"] is False
    assert state["room_unlocked"] is False


@pytest.mark.parametrize("status", ["paid", "exempted"])
def test_settled_mandatory_service_allows_stay_info(status) -> None:
    services = [_service(mandatory=True, status=status)]

    state = access.access_state(
        _reservation(), _property(), {}, services, checkin_complete=True, now=AT_UNLOCK
    )

    assert state["can_show_stay_info"] is True


def test_paid_early_checkin_moves_unlock_time() -> None:
    services = [_service(mandatory=False, status="paid", access_time_override="13:00")]
    now = datetime(2024, 3, 5, 4, 0, tzinfo=timezone.utc)

    state = access.access_state(_reservation(), _property(), {}, services, checkin_complete=True, now=now)

    assert state["access_time"] == "13:00"
    assert state["room_unlocked"] is True


def test_unpaid_override_is_ignored() -> None:
    services = [_service(mandatory=False, status="available", access_time_override="13:00")]

    state = access.access_state(
        _reservation(), _property(), {}, services, checkin_complete=True, now=BEFORE_UNLOCK
    )

    assert state["access_time"] == "16:00"


def test_journey_progress() -> None:
    start = access.journey(checkin_complete=False, services=[], room_unlocked=False)
    waiting_for_tax = access.journey(
        checkin_complete=True, services=[_service(mandatory=True, status="pending")], room_unlocked=False
    )
    waiting_for_room = access.journey(checkin_complete=True, services=[], room_unlocked=False)
    done = access.journey(checkin_complete=True, services=[], room_unlocked=True)

    assert start["current_step"] == "checkin"
    assert start["progress"] == 33
    assert waiting_for_tax["current_step"] == "tax_payment"
    assert waiting_for_room["current_step"] == "access_available"
    assert waiting_for_room["progress"] == 67
    assert done["progress"] == 100
    assert [step["status"] for step in done["steps"]] == ["completed", "completed", "completed"]


def test_portal_hides_stay_info_before_checkin(monkeypatch) -> None:
    context = {
        **_reservation(num_guests=2),
        "properties": _property(),
        "room_types": {"id": "rt-1", "name": "Twin"},
        "room_units": {"id": "unit-1", "unit_number": "101", "access_code": "4821"},
    }
    monkeypatch.setattr(access, "get_reservation_context", lambda **_: context)
    monkeypatch.setattr(
        access,
        "list_reservation_guests",
        lambda **_: [{"guest_number": 1, "checkin_submitted_at": "2024-03-01T00:00:00Z"}],
    )
    monkeypatch.setattr(access, "list_reservation_addons", lambda **_: [])

    portal = access.build_guest_portal(_reservation(), now=AT_UNLOCK)

    assert portal["completion"]["remaining_guests"] == 1
    assert "wifi_password" not in portal["property"]
    assert portal["property"]["name"] == "Hillside House"
    assert "access_code" not in portal["room"]
    assert portal["room"]["unit_number"] == "101"
    assert "properties" not in portal["reservation"]
    assert portal["access"]["room_unlocked"] is False
    assert portal["journey"]["current_step"] == "checkin"


def test_portal_unlocks_room_after_checkin(monkeypatch) -> None:
    context = {
        **_reservation(),
        "properties": _property(),
        "room_units": {"id": "unit-1", "unit_number": "101", "access_code": "4821"},
    }
    monkeypatch.setattr(access, "get_reservation_context", lambda **_: context)
    monkeypatch.setattr(
        access,
        "list_reservation_guests",
        lambda **_: [{"guest_number": 1, "checkin_submitted_at": "2024-03-01T00:00:00Z"}],
    )
    monkeypatch.setattr(access, "list_reservation_addons", lambda **_: [])

    portal = access.build_guest_portal(_reservation(), now=AT_UNLOCK)

    assert portal["property"]["wifi_password"] == "secret"
    assert portal["access"]["access_code"] == "4821"
    assert portal["journey"]["progress"] == 100
