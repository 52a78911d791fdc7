from stayflow.scheduling.templates import (
    build_payload,
    calling_code,
    channel_for_booking_source,
    language_for_phone,
    render_template,
    select_template,
)

TEMPLATES = [
    {"id": "t-email-en", "channel": "email", "language": "en"},
    {"id": "t-email-ja", "channel": "email", "language": "ja"},
    {"id": "t-airbnb-en", "channel": "airbnb", "language": "en"},
    {"id": "t-sms-fr", "channel": "sms", "language": "fr", "is_primary": True},
]


def test_booking_source_maps_to_channel() -> None:
    assert channel_for_booking_source("Airbnb") == "airbnb"
    assert channel_for_booking_source("Booking.com") == "booking"
    assert channel_for_booking_source("someone's cousin") == "email"
    assert channel_for_booking_source(None) == "email"


def test_calling_code_prefers_the_longest_prefix() -> None:
    assert calling_code("+852 9123 4567") == "852"
    assert calling_code("+81-90-1234-5678") == "81"
    assert calling_code("0044 (20) 7946 0000") == "44"
    assert calling_code("") is None


def test_language_follows_phone_country() -> None:
    assert language_for_phone("+81 90 1234 5678") == "ja"
    assert language_for_phone("+33 6 12 34 56 78") == "fr"
    assert language_for_phone("+999 1") == "en"
    assert language_for_phone(None) == "en"


def test_template_selection_order() -> None:
    assert select_template(TEMPLATES, "airbnb", "en")["id"] == "t-airbnb-en"
    # Channel in English before email in the guest language.
    assert select_template(TEMPLATES, "airbnb", "ja")["id"] == "t-airbnb-en"
    assert select_template(TEMPLATES, "booking", "ja")["id"] == "t-email-ja"
    assert select_template(TEMPLATES, "booking", "de")["id"] == "t-email-en"


def test_template_selection_falls_back_to_primary_then_first() -> None:
    no_email = [template for template in TEMPLATES if template["channel"] not in {"email", "airbnb"}]
    assert select_template(no_email, "booking", "de")["id"] == "t-sms-fr"
    assert select_template([{"id": "only", "channel": "sms", "language": "ko"}], "email", "en")["id"] == "only"
    assert select_template([], "email", "en") is None


def test_payload_merges_reservation_property_and_room() -> None:
    payload = build_payload(
        {
            "id": "res-1",
            "beds24_booking_id": "B-77",
            "booking_name": "Aiko Tanaka",
            "check_in_date": "2024-03-05",
            "check_out_date": "2024-03-08",
            "num_guests": 2,
            "properties": {"name": "Hillside House", "wifi_name": "hillside", "access_time": "16:00"},
            "room_types": {"name": "Twin", "max_guests": 3},
            "room_units": {"unit_number": "201", "access_code": "4821"},
        }
    )
    assert payload["guest_firstname"] == "Aiko"
    assert payload["guest_lastname"] == "Tanaka"
    assert payload["nights_count"] == 3
    assert payload["booking_id"] == "B-77"
    assert payload["property_name"] == "Hillside House"
    assert payload["access_time"] == "16:00"
    assert payload["departure_time"] == "11:00"
    assert payload["room_number"] == "201"
    assert payload["access_code"] == "4821"
    assert payload["currency"] == "JPY"


def test_payload_defaults_for_sparse_reservation() -> None:
    payload = build_payload({"id": "res-2", "check_in_date": "2024-03-05", "check_out_date": "2024-03-06"})
    assert payload["guest_name"] == "Guest"
    assert payload["room_number"] == "Your room"
    assert payload["property_name"] == "Property"
    assert payload["booking_id"] == "res-2"


def test_render_replaces_known_placeholders_only() -> None:
    rendered = render_template(
        "Hi {{guest_firstname}}, room {{ room_number }} opens at {{access_time}}. {{unknown}}",
        {"guest_firstname": "Aiko", "room_number": "201", "access_time": None},
    )
    assert rendered == "Hi Aiko, room 201 opens at . {{unknown}}"
