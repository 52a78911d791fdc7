from __future__ import annotations

from typing import Any, Mapping


def map_fields(
    payload: Mapping[str, Any],
    field_map: Mapping[str, str],
    *,
    defaults: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Translate API keys to storage columns.

    Only keys present in ``payload`` are copied, so the result is safe to use as
    a partial update. Keys already in storage form are accepted as well.
    """
    storage_names = set(field_map.values())
    row: dict[str, Any] = dict(defaults or {})
    for key, value in payload.items():
        if key in field_map:
            row[field_map[key]] = value
        elif key in storage_names:
            row[key] = value
    return row


PROPERTY_FIELDS = {
    "name": "name",
    "address": "address",
    "ownerId": "owner_id",
    "description": "description",
    "propertyType": "property_type",
    "wifiName": "wifi_name",
    "wifiPassword": "wifi_password",
    "houseRules": "house_rules",
    "checkInInstructions": "check_in_instructions",
    "emergencyContact": "emergency_contact",
    "propertyAmenities": "property_amenities",
    "locationInfo": "location_info",
    "accessTime": "access_time",
    "departureTime": "departure_time",
    "timezone": "timezone",
    "defaultCleanerId": "default_cleaner_id",
    "beds24PropertyId": "beds24_property_id",
    "isActive": "is_active",
}

ROOM_TYPE_FIELDS = {
    "propertyId": "property_id",
    "name": "name",
    "description": "description",
    "maxGuests": "max_guests",
    "basePrice": "base_price",
    "currency": "currency",
    "roomAmenities": "room_amenities",
    "bedConfiguration": "bed_configuration",
    "roomSizeSqm": "room_size_sqm",
    "hasBalcony": "has_balcony",
    "hasKitchen": "has_kitchen",
    "isAccessible": "is_accessible",
    "beds24RoomTypeId": "beds24_roomtype_id",
    "isActive": "is_active",
}

ROOM_UNIT_FIELDS = {
    "roomTypeId": "room_type_id",
    "unitNumber": "unit_number",
    "floorNumber": "floor_number",
    "accessCode": "access_code",
    "accessInstructions": "access_instructions",
    "wifiName": "wifi_name",
    "wifiPassword": "wifi_password",
    "unitAmenities": "unit_amenities",
    "maintenanceNotes": "maintenance_notes",
    "beds24UnitId": "beds24_unit_id",
    "isActive": "is_active",
}

RESERVATION_FIELDS = {
    "beds24BookingId": "beds24_booking_id",
    "bookingName": "booking_name",
    "bookingFirstname": "booking_firstname",
    "bookingLastname": "booking_lastname",
    "bookingEmail": "booking_email",
    "bookingPhone": "booking_phone",
    "checkInDate": "check_in_date",
    "checkOutDate": "check_out_date",
    "checkInTime": "check_in_time",
    "checkOutTime": "check_out_time",
    "numGuests": "num_guests",
    "numAdults": "num_adults",
    "numChildren": "num_children",
    "totalAmount": "total_amount",
    "currency": "currency",
    "status": "status",
    "bookingSource": "booking_source",
    "specialRequests": "special_requests",
    "propertyId": "property_id",
    "roomTypeId": "room_type_id",
    "roomUnitId": "room_unit_id",
    "guestLanguage": "guest_language",
    "adminVerified": "admin_verified",
}

GUEST_CHECKIN_FIELDS = {
    "firstName": "guest_firstname",
    "lastName": "guest_lastname",
    "personalEmail": "guest_mail",
    "contactNumber": "guest_contact",
    "address": "guest_address",
    "estimatedCheckinTime": "estimated_checkin_time",
    "travelPurpose": "travel_purpose",
    "emergencyContactName": "emergency_contact_name",
    "emergencyContactPhone": "emergency_contact_phone",
    "passportUrl": "passport_url",
    "agreementAccepted": "agreement_accepted",
}

CLEANING_TASK_FIELDS = {
    "propertyId": "property_id",
    "roomUnitId": "room_unit_id",
    "reservationId": "reservation_id",
    "cleanerId": "cleaner_id",
    "taskDate": "task_date",
    "taskType": "task_type",
    "status": "status",
    "priority": "priority",
    "estimatedDuration": "estimated_duration",
    "specialNotes": "special_notes",
    "bookingName": "booking_name",
    "startedAt": "started_at",
    "completedAt": "completed_at",
    "assignedAt": "assigned_at",
}

USER_FIELDS = {
    "email": "email",
    "firstName": "first_name",
    "lastName": "last_name",
    "phone": "phone",
    "role": "role",
    "isActive": "is_active",
}

MESSAGE_RULE_FIELDS = {
    "propertyId": "property_id",
    "code": "code",
    "name": "name",
    "type": "type",
    "enabled": "enabled",
    "delayMinutes": "delay_minutes",
    "days": "days",
    "hours": "hours",
    "atTime": "at_time",
    "backfill": "backfill",
    "timezone": "timezone",
    "bookingSources": "booking_sources",
    "minNights": "min_nights",
    "minGuests": "min_guests",
    "maxGuests": "max_guests",
}

MESSAGE_TEMPLATE_FIELDS = {
    "propertyId": "property_id",
    "name": "name",
    "channel": "channel",
    "language": "language",
    "content": "content",
    "enabled": "enabled",
}
