from __future__ import annotations

import re
from typing import Any

from stayflow.core.config import settings
from stayflow.services.reservations import nights_between

DEFAULT_CHANNEL = "email"
DEFAULT_LANGUAGE = "en"

BOOKING_SOURCE_CHANNELS = {
    "airbnb": "airbnb",
    "booking.com": "booking",
    "booking": "booking",
    "whatsapp": "whatsapp",
    "direct": "email",
    "phone": "sms",
    "email": "email",
    "website": "email",
}

CALLING_CODE_LANGUAGES = {
    "81": "ja",
    "82": "ko",
    "86": "zh",
    "852": "zh",
    "853": "zh",
    "886": "zh",
    "1": "en",
    "44": "en",
    "61": "en",
    "64": "en",
    "91": "en",
    "65": "en",
    "60": "en",
    "33": "fr",
    "49": "de",
    "34": "es",
    "52": "es",
    "39": "it",
    "7": "ru",
    "55": "pt",
    "66": "th",
    "84": "vi",
    "62": "id",
}

_CODES_LONGEST_FIRST = sorted(CALLING_CODE_LANGUAGES, key=len, reverse=True)
_PHONE_NOISE = re.compile(r"[\s\-()]")
_PLACEHOLDER = re.compile(r"{{\s*([A-Za-z0-9_]+)\s*}}")


def channel_for_booking_source(booking_source: str | None) -> str:
    if not booking_source:
        return DEFAULT_CHANNEL
    return BOOKING_SOURCE_CHANNELS.get(booking_source.strip().lower(), DEFAULT_CHANNEL)


def calling_code(phone: str | None) -> str | None:
    if not phone or not isinstance(phone, str):
        return None
    digits = _PHONE_NOISE.sub("", phone)
    if digits.startswith("+"):
        digits = digits[1:]
    elif digits.startswith("00"):
        digits = digits[2:]
    return next((code for code in _CODES_LONGEST_FIRST if digits.startswith(code)), None)


def language_for_phone(phone: str | None) -> str:
    code = calling_code(phone)
    return CALLING_CODE_LANGUAGES.get(code, DEFAULT_LANGUAGE) if code else DEFAULT_LANGUAGE


def select_template(templates: list[dict[str, Any]], channel: str, language: str) -> dict[str, Any] | None:
    """Pick the best template for a guest.

    Preference: exact channel and language, the channel in English, email in
    the guest language, email in English, the primary template, then whatever
    comes first.
    """
    if not templates:
        return None
    for wanted_channel, wanted_language in (
        (channel, language),
        (channel, DEFAULT_LANGUAGE),
        (DEFAULT_CHANNEL, language),
        (DEFAULT_CHANNEL, DEFAULT_LANGUAGE),
    ):
        for template in templates:
            if template.get("channel") == wanted_channel and template.get("language") == wanted_language:
                return template
    primary = next((template for template in templates if template.get("is_primary")), None)
    return primary or templates[0]


def _split_name(full_name: str) -> tuple[str, str]:
    first, _, rest = full_name.strip().partition(" ")
    return first, rest.strip()


def build_payload(reservation: dict[str, Any]) -> dict[str, Any]:
    property_row = reservation.get("properties") or {}
    room_type = reservation.get("room_types") or {}
    room_unit = reservation.get("room_units") or {}
    guest_name = reservation.get("booking_name") or "Guest"
    first_guess, last_guess = _split_name(guest_name)

    return {
        "guest_name": guest_name,
        "guest_firstname": reservation.get("booking_firstname") or first_guess or "Guest",
        "guest_lastname": reservation.get("booking_lastname") or last_guess,
        "guest_email": reservation.get("booking_email") or "",
        "guest_phone": reservation.get("booking_phone") or "",
        "num_guests": reservation.get("num_guests") or 1,
        "num_adults": reservation.get("num_adults") or 1,
        "num_children": reservation.get("num_children") or 0,
        "check_in_date": reservation.get("check_in_date"),
        "check_out_date": reservation.get("check_out_date"),
        "nights_count": nights_between(reservation.get("check_in_date"), reservation.get("check_out_date")),
        "check_in_token": reservation.get("check_in_token") or "",
        "booking_id": reservation.get("beds24_booking_id") or reservation.get("id"),
        "total_amount": reservation.get("total_amount") or 0,
        "currency": reservation.get("currency") or settings.default_currency,
        "booking_source": reservation.get("booking_source") or "Direct",
        "special_requests": reservation.get("special_requests") or "",
        "property_name": property_row.get("name") or "Property",
        "property_address": property_row.get("address") or "",
        "wifi_name": property_row.get("wifi_name") or "WiFi",
        "wifi_password": property_row.get("wifi_password") or "Ask at front desk",
        "check_in_instructions": property_row.get("check_in_instructions") or "",
        "house_rules": property_row.get("house_rules") or "",
        "emergency_contact": property_row.get("emergency_contact") or "",
        "access_time": property_row.get("access_time") or settings.default_check_in_time,
        "departure_time": property_row.get("departure_time") or settings.default_check_out_time,
        "room_number": room_unit.get("unit_number") or "Your room",
        "room_type_name": room_type.get("name") or property_row.get("name") or "Room",
        "access_code": room_unit.get("access_code") or "",
        "access_instructions": room_unit.get("access_instructions") or "",
        "bed_configuration": room_type.get("bed_configuration") or "",
        "max_guests": room_type.get("max_guests") or reservation.get("num_guests") or 1,
    }


def render_template(content: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{ name }}`` placeholders; unknown names are left untouched."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, content or "")
