from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stayflow.scheduling.rules import RuleType


class ReservationStatus(StrEnum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    COMPLETED = "completed"


class CamelModel(BaseModel):
    """Request body accepting camelCase keys (snake_case works too)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class StorageRow(BaseModel):
    """Storage row passed through as-is; only the identity is validated."""

    model_config = ConfigDict(extra="allow")

    id: str | int


# Properties, room types, room units


class PropertyItem(StorageRow):
    name: str | None = None
    is_active: bool | None = None


class PropertyListResponse(BaseModel):
    items: list[PropertyItem]
    count: int


class PropertyCreateRequest(CamelModel):
    name: str = Field(min_length=1)
    address: str | None = None
    owner_id: str | None = None
    description: str | None = None
    property_type: str | None = None
    wifi_name: str | None = None
    wifi_password: str | None = None
    house_rules: str | None = None
    check_in_instructions: str | None = None
    emergency_contact: str | None = None
    property_amenities: list[str] | None = None
    location_info: dict[str, Any] | None = None
    access_time: str | None = None
    departure_time: str | None = None
    timezone: str | None = None
    default_cleaner_id: str | None = None
    beds24_property_id: int | str | None = Field(default=None, alias="beds24PropertyId")
    is_active: bool | None = None


class PropertyUpdateRequest(PropertyCreateRequest):
    name: str | None = Field(default=None, min_length=1)


class PropertyWriteResponse(BaseModel):
    ok: bool = True
    property: PropertyItem


class RoomTypeItem(StorageRow):
    property_id: str | None = None
    name: str | None = None


class RoomTypeListResponse(BaseModel):
    items: list[RoomTypeItem]
    count: int


class RoomTypeCreateRequest(CamelModel):
    name: str = Field(min_length=1)
    description: str | None = None
    max_guests: int | None = Field(default=None, ge=1)
    base_price: float | None = Field(default=None, ge=0)
    currency: str | None = None
    room_amenities: list[str] | None = None
    bed_configuration: str | None = None
    room_size_sqm: float | None = None
    has_balcony: bool | None = None
    has_kitchen: bool | None = None
    is_accessible: bool | None = None
    beds24_room_type_id: int | str | None = Field(default=None, alias="beds24RoomTypeId")
    is_active: bool | None = None


class RoomTypeUpdateRequest(RoomTypeCreateRequest):
    name: str | None = Field(default=None, min_length=1)


class RoomTypeWriteResponse(BaseModel):
    ok: bool = True
    room_type: RoomTypeItem


class RoomUnitItem(StorageRow):
    room_type_id: str | None = None
    unit_number: str | None = None


class RoomUnitListResponse(BaseModel):
    items: list[RoomUnitItem]
    count: int


class RoomUnitCreateRequest(CamelModel):
    unit_number: str = Field(min_length=1)
    floor_number: int | None = None
    access_code: str | None = None
    access_instructions: str | None = None
    wifi_name: str | None = None
    wifi_password: str | None = None
    unit_amenities: list[str] | None = None
    maintenance_notes: str | None = None
    beds24_unit_id: int | str | None = Field(default=None, alias="beds24UnitId")
    is_active: bool | None = None


class RoomUnitUpdateRequest(RoomUnitCreateRequest):
    unit_number: str | None = Field(default=None, min_length=1)


class RoomUnitWriteResponse(BaseModel):
    ok: bool = True
    room_unit: RoomUnitItem


class DeleteResponse(BaseModel):
    ok: bool = True
    id: str
    soft_deleted: bool


# Reservations


class ReservationItem(StorageRow):
    beds24_booking_id: str | int | None = None
    status: str | None = None
    check_in_date: date | None = None
    check_out_date: date | None = None


class ReservationListResponse(BaseModel):
    items: list[ReservationItem]
    count: int
    limit: int
    offset: int
    has_more: bool


class ReservationCreateRequest(CamelModel):
    beds24_booking_id: str | int | None = Field(default=None, alias="beds24BookingId")
    booking_name: str | None = None
    booking_firstname: str | None = None
    booking_lastname: str | None = None
    booking_email: str | None = None
    booking_phone: str | None = None
    check_in_date: date
    check_out_date: date
    check_in_time: str | None = None
    check_out_time: str | None = None
    num_guests: int | None = Field(default=None, ge=1)
    num_adults: int | None = Field(default=None, ge=1)
    num_children: int | None = Field(default=None, ge=0)
    total_amount: float | None = Field(default=None, ge=0)
    currency: str | None = None
    status: str | None = None
    booking_source: str | None = None
    special_requests: str | None = None
    property_id: str | None = None
    room_type_id: str | None = None
    room_unit_id: str | None = None
    guest_language: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        for key in ("checkInDate", "checkOutDate"):
            if isinstance(payload.get(key), date):
                payload[key] = payload[key].isoformat()
        return payload


class ReservationUpdateRequest(ReservationCreateRequest):
    check_in_date: date | None = None
    check_out_date: date | None = None
    admin_verified: bool | None = None


class ReservationStatusUpdateRequest(BaseModel):
    status: ReservationStatus


class ReservationWriteResponse(BaseModel):
    ok: bool = True
    reservation: ReservationItem


class DashboardStatsResponse(BaseModel):
    today_arrivals: int = 0
    today_departures: int = 0
    in_house_guests: int = 0
    pending_today_checkins: int = 0


# Cleaning


class CleaningTaskItem(StorageRow):
    status: str | None = None
    priority: str | None = None
    task_date: date | None = None


class CleaningTaskListResponse(BaseModel):
    items: list[CleaningTaskItem]
    count: int
    limit: int
    offset: int
    has_more: bool


class CleaningTaskCreateRequest(CamelModel):
    property_id: str
    room_unit_id: str | None = None
    reservation_id: str | None = None
    cleaner_id: str | None = None
    task_date: date
    task_type: Literal["checkout", "eco", "deep_clean"] | None = None
    status: Literal["pending", "in_progress", "completed", "cancelled"] | None = None
    priority: Literal["normal", "high"] | None = None
    estimated_duration: str | None = None
    special_notes: str | None = None
    booking_name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if isinstance(payload.get("taskDate"), date):
            payload["taskDate"] = payload["taskDate"].isoformat()
        return payload


class CleaningTaskUpdateRequest(CleaningTaskCreateRequest):
    property_id: str | None = None
    task_date: date | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        for key in ("startedAt", "completedAt"):
            if isinstance(payload.get(key), datetime):
                payload[key] = payload[key].isoformat()
        return payload


class CleaningAssignRequest(CamelModel):
    cleaner_id: str


class CleaningTaskWriteResponse(BaseModel):
    ok: bool = True
    task: CleaningTaskItem


class CleaningStatsResponse(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)


# Users


class UserItem(StorageRow):
    email: str | None = None
    role: str | None = None
    is_active: bool | None = None


class UserListResponse(BaseModel):
    items: list[UserItem]
    count: int
    limit: int
    offset: int
    has_more: bool


class UserCreateRequest(CamelModel):
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: Literal["admin", "owner", "cleaner", "guest"] = "guest"
    is_active: bool | None = None


class UserUpdateRequest(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: Literal["admin", "owner", "cleaner", "guest"] | None = None
    is_active: bool | None = None


class UserWriteResponse(BaseModel):
    ok: bool = True
    user: UserItem


class UserStatsResponse(BaseModel):
    total: int = 0
    active: int = 0
    by_role: dict[str, int] = Field(default_factory=dict)


# Message automation


class MessageRuleItem(StorageRow):
    code: str | None = None
    type: str | None = None
    backfill: str | None = None
    templates: list[dict[str, Any]] = Field(default_factory=list)


class MessageRuleListResponse(BaseModel):
    items: list[MessageRuleItem]
    count: int


class MessageRuleCreateRequest(CamelModel):
    property_id: str | None = None
    code: str = Field(min_length=1)
    name: str | None = None
    type: RuleType
    enabled: bool | None = None
    delay_minutes: int | None = Field(default=None, ge=0)
    days: int | None = Field(default=None, ge=0)
    hours: int | None = Field(default=None, ge=0)
    at_time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}(:\d{2})?$")
    backfill: Literal["none", "skip_if_past", "until_checkin"] | None = None
    timezone: str | None = None
    booking_sources: list[str] | None = None
    min_nights: int | None = Field(default=None, ge=0)
    min_guests: int | None = Field(default=None, ge=0)
    max_guests: int | None = Field(default=None, ge=0)


class MessageRuleUpdateRequest(MessageRuleCreateRequest):
    code: str | None = Field(default=None, min_length=1)
    type: RuleType | None = None


class MessageRuleWriteResponse(BaseModel):
    ok: bool = True
    rule: MessageRuleItem


class RuleTemplateLinkRequest(CamelModel):
    template_id: str
    is_primary: bool = False
    priority: int = 0


class MessageTemplateItem(StorageRow):
    name: str | None = None
    channel: str | None = None
    language: str | None = None
    content: str | None = None


class MessageTemplateListResponse(BaseModel):
    items: list[MessageTemplateItem]
    count: int


class MessageTemplateCreateRequest(CamelModel):
    property_id: str | None = None
    name: str = Field(min_length=1)
    channel: Literal["email", "sms", "whatsapp", "airbnb", "booking", "inapp"]
    language: str | None = None
    content: str = Field(min_length=1)
    enabled: bool | None = None


class MessageTemplateUpdateRequest(MessageTemplateCreateRequest):
    name: str | None = Field(default=None, min_length=1)
    channel: Literal["email", "sms", "whatsapp", "airbnb", "booking", "inapp"] | None = None
    content: str | None = Field(default=None, min_length=1)


class MessageTemplateWriteResponse(BaseModel):
    ok: bool = True
    template: MessageTemplateItem


class ScheduledMessageItem(StorageRow):
    rule_id: str | None = None
    reservation_id: str | None = None
    run_at: datetime | None = None
    status: Literal["pending", "processing", "sent", "failed", "skipped", "cancelled"] | None = None


class ScheduledMessageListResponse(BaseModel):
    items: list[ScheduledMessageItem]
    count: int
    limit: int
    offset: int
    has_more: bool


class GenerationSummary(BaseModel):
    reservations: int = 0
    scheduled: int = 0
    send_now: int = 0
    skipped: int = 0
    dropped: int = 0
    deferred: int = 0
    duplicates: int = 0
    failed: int = 0


class DispatchSummary(BaseModel):
    enabled: bool = True
    due: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    already_claimed: int = 0


class ScheduledMessagePreview(BaseModel):
    rule_id: str
    rule_code: str | None = None
    rule_type: str
    backfill: str
    scheduled_for: datetime
    run_at: datetime
    action: Literal["schedule", "send_now", "skip", "drop", "defer"]
    will_create: bool
    status: str | None = None
    channel: str
    language: str
    template_id: str | None = None


class SchedulePreviewResponse(BaseModel):
    reservation_id: str
    items: list[ScheduledMessagePreview]
    count: int


class CancelScheduledResponse(BaseModel):
    ok: bool = True
    reservation_id: str
    cancelled: int


class RegenerateResponse(BaseModel):
    ok: bool = True
    reservation_id: str
    cancelled: int
    summary: GenerationSummary


class SchedulerMonitorResponse(BaseModel):
    enabled: bool
    dispatch_enabled: bool
    running: bool
    interval_sec: int
    ticks: int = 0
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_success_at: datetime | None = None
    last_duration_ms: float | None = None
    runs_total: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None
    last_generation: GenerationSummary | None = None
    last_reconcile: GenerationSummary | None = None
    last_dispatch: DispatchSummary | None = None


# Guest portal


class JourneyStep(BaseModel):
    key: Literal["checkin", "tax_payment", "access_available"]
    status: Literal["completed", "current", "pending"]


class GuestJourney(BaseModel):
    steps: list[JourneyStep]
    current_step: str | None = None
    progress: int = Field(ge=0, le=100)


class GuestAccess(BaseModel):
    checkin_complete: bool
    services_settled: bool
    can_show_stay_info: bool
    room_unlocked: bool
    access_time: str
    departure_time: str
    unlocks_at: datetime | None = None
    access_code: str | None = None
    access_instructions: str | None = None


class GuestServiceItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    service_type: str | None = None
    name: str | None = None
    is_mandatory: bool = False
    payment_status: str


class GuestServiceListResponse(BaseModel):
    items: list[GuestServiceItem]
    count: int
    all_mandatory_settled: bool


class GuestPortalResponse(BaseModel):
    reservation: dict[str, Any]
    guests: list[dict[str, Any]] = Field(default_factory=list)
    completion: dict[str, Any]
    property: dict[str, Any] | None = None
    room: dict[str, Any] | None = None
    services: list[GuestServiceItem] = Field(default_factory=list)
    journey: GuestJourney
    access: GuestAccess


class GuestCheckinRequest(CamelModel):
    guest_number: int = Field(default=1, ge=1)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    personal_email: str | None = None
    contact_number: str | None = None
    address: str | None = None
    estimated_checkin_time: str | None = None
    travel_purpose: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    passport_url: str | None = None
    agreement_accepted: bool = False


class GuestCheckinResponse(BaseModel):
    ok: bool = True
    guest: dict[str, Any]
    completion: dict[str, Any]


class ThreadItem(StorageRow):
    reservation_id: str | None = None
    status: str | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None


class MessageItem(StorageRow):
    thread_id: str | None = None
    origin_role: str | None = None
    direction: str | None = None
    channel: str | None = None
    content: str | None = None
    created_at: datetime | None = None


class GuestThreadResponse(BaseModel):
    thread: ThreadItem
    messages: list[MessageItem]
    count: int


class GuestMessageCreateRequest(CamelModel):
    content: str = Field(min_length=1, max_length=4000)
    channel: Literal["inapp"] = "inapp"


class GuestMessageWriteResponse(BaseModel):
    ok: bool = True
    message: MessageItem


class GuestAccessReadResponse(BaseModel):
    ok: bool = True
    reservation_id: str


class ReservationServiceToggleRequest(CamelModel):
    enabled: bool


class ReservationServicesResponse(BaseModel):
    reservation_id: str
    items: list[GuestServiceItem]
    count: int
    all_mandatory_settled: bool


# Staff inbox


class ThreadListResponse(BaseModel):
    items: list[ThreadItem]
    count: int
    limit: int
    offset: int
    has_more: bool


class ThreadStatusUpdateRequest(BaseModel):
    status: Literal["open", "closed", "archived"]


class ThreadWriteResponse(BaseModel):
    ok: bool = True
    thread: ThreadItem


class HostMessageCreateRequest(CamelModel):
    content: str = Field(min_length=1, max_length=4000)
    channel: str = "inapp"
    parent_message_id: str | None = None


class ThreadReadResponse(BaseModel):
    ok: bool = True
    thread_id: str
    marked_read: int


class ThreadStatsResponse(BaseModel):
    total_messages: int = 0
    guest_messages: int = 0
    host_messages: int = 0
    system_messages: int = 0
    assistant_messages: int = 0
    incoming: int = 0
    outgoing: int = 0


# Webhooks


class WebhookResponse(BaseModel):
    ok: bool = True
    event: str
    action: Literal["created", "updated", "cancelled", "duplicate", "ignored"]
    reservation_id: str | None = None
    beds24_booking_id: str | None = None
    messages: GenerationSummary | None = None
