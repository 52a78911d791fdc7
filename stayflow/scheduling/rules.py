"""Message automation rule timing.

A rule turns a reservation into a concrete send time (``run_at``) and a backfill
policy decides what happens when that time has already passed by the time the
reservation (or the rule) shows up:

* ``none``           past-due messages are never created
* ``skip_if_past``   past-due messages are recorded as ``skipped`` and never sent
* ``until_checkin``  past-due messages go out immediately while the guest has not
                     checked in yet; after check-in they are recorded as skipped

Everything here is pure: callers pass ``now`` explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import StrEnum
from typing import Any

from stayflow.core.config import settings
from stayflow.core.timeutil import at_local, parse_clock, parse_date, parse_timestamp, zone


class RuleType(StrEnum):
    ON_CREATE_DELAY_MIN = "ON_CREATE_DELAY_MIN"
    BEFORE_ARRIVAL_DAYS_AT_TIME = "BEFORE_ARRIVAL_DAYS_AT_TIME"
    ARRIVAL_DAY_HOURS_BEFORE_CHECKIN = "ARRIVAL_DAY_HOURS_BEFORE_CHECKIN"
    AFTER_CHECKIN_HOURS = "AFTER_CHECKIN_HOURS"
    BEFORE_CHECKOUT_HOURS = "BEFORE_CHECKOUT_HOURS"
    AFTER_DEPARTURE_DAYS = "AFTER_DEPARTURE_DAYS"


class Backfill(StrEnum):
    NONE = "none"
    SKIP_IF_PAST = "skip_if_past"
    UNTIL_CHECKIN = "until_checkin"


class Action(StrEnum):
    SCHEDULE = "schedule"
    SEND_NOW = "send_now"
    SKIP = "skip"
    DROP = "drop"
    DEFER = "defer"


DEFAULT_AT_TIME = "10:00"
AFTER_DEPARTURE_CLOCK = time(10, 0)


class RuleError(ValueError):
    pass


@dataclass(frozen=True)
class StayWindow:
    check_in: datetime
    check_out: datetime
    created_at: datetime | None = None

    @property
    def nights(self) -> int:
        return max(0, (self.check_out.date() - self.check_in.date()).days)


@dataclass(frozen=True)
class ScheduleDecision:
    action: Action
    run_at: datetime

    @property
    def creates_row(self) -> bool:
        return self.action in {Action.SCHEDULE, Action.SEND_NOW, Action.SKIP}

    @property
    def row_status(self) -> str:
        return "skipped" if self.action == Action.SKIP else "pending"


def rule_type(rule: dict[str, Any]) -> RuleType:
    try:
        return RuleType(str(rule.get("type") or "").strip().upper())
    except ValueError as exc:
        raise RuleError(f"Unknown rule type: {rule.get('type')!r}") from exc


def backfill_policy(rule: dict[str, Any]) -> Backfill:
    try:
        return Backfill(str(rule.get("backfill") or "none").strip().lower())
    except ValueError as exc:
        raise RuleError(f"Unknown backfill policy: {rule.get('backfill')!r}") from exc


def rule_timezone(rule: dict[str, Any]) -> str:
    return str(rule.get("timezone") or settings.default_timezone)


def _number(rule: dict[str, Any], key: str) -> int:
    try:
        return int(rule.get(key) or 0)
    except (TypeError, ValueError) as exc:
        raise RuleError(f"Rule parameter {key!r} must be numeric") from exc


def stay_window(
    reservation: dict[str, Any],
    *,
    tz_name: str | None = None,
    property_row: dict[str, Any] | None = None,
) -> StayWindow:
    property_row = property_row or reservation.get("properties") or {}
    check_in_day = parse_date(reservation.get("check_in_date"))
    check_out_day = parse_date(reservation.get("check_out_date"))
    if not check_in_day or not check_out_day:
        raise RuleError("Reservation is missing check-in or check-out date")

    check_in_clock = parse_clock(
        reservation.get("check_in_time") or property_row.get("access_time"),
        settings.default_check_in_time,
    )
    check_out_clock = parse_clock(
        reservation.get("check_out_time") or property_row.get("departure_time"),
        settings.default_check_out_time,
    )
    return StayWindow(
        check_in=at_local(check_in_day, check_in_clock, tz_name),
        check_out=at_local(check_out_day, check_out_clock, tz_name),
        created_at=parse_timestamp(reservation.get("created_at")),
    )


def compute_run_at(rule: dict[str, Any], stay: StayWindow, *, now: datetime | None = None) -> datetime:
    """Concrete send time for ``rule`` in the rule's timezone."""
    kind = rule_type(rule)
    tz_name = rule_timezone(rule)
    check_in = stay.check_in.astimezone(zone(tz_name))
    check_out = stay.check_out.astimezone(zone(tz_name))

    if kind is RuleType.ON_CREATE_DELAY_MIN:
        created = stay.created_at or now
        if created is None:
            raise RuleError("ON_CREATE_DELAY_MIN needs the reservation creation time")
        return (created + timedelta(minutes=_number(rule, "delay_minutes"))).astimezone(zone(tz_name))
    if kind is RuleType.BEFORE_ARRIVAL_DAYS_AT_TIME:
        day = check_in.date() - timedelta(days=_number(rule, "days"))
        return at_local(day, parse_clock(rule.get("at_time"), DEFAULT_AT_TIME), tz_name)
    if kind is RuleType.ARRIVAL_DAY_HOURS_BEFORE_CHECKIN:
        return check_in - timedelta(hours=_number(rule, "hours"))
    if kind is RuleType.AFTER_CHECKIN_HOURS:
        return check_in + timedelta(hours=_number(rule, "hours"))
    if kind is RuleType.BEFORE_CHECKOUT_HOURS:
        return check_out - timedelta(hours=_number(rule, "hours"))
    day = check_out.date() + timedelta(days=_number(rule, "days"))
    return at_local(day, AFTER_DEPARTURE_CLOCK, tz_name)


def decide(
    rule: dict[str, Any],
    run_at: datetime,
    stay: StayWindow,
    now: datetime,
    *,
    window_days: int | None = None,
) -> ScheduleDecision:
    """Apply the backfill policy (and the optional look-ahead window) to ``run_at``."""
    if run_at > now:
        horizon_exempt = rule_type(rule) is RuleType.ON_CREATE_DELAY_MIN
        if window_days is not None and not horizon_exempt and run_at - now > timedelta(days=window_days):
            return ScheduleDecision(Action.DEFER, run_at)
        return ScheduleDecision(Action.SCHEDULE, run_at)

    policy = backfill_policy(rule)
    if policy is Backfill.NONE:
        return ScheduleDecision(Action.DROP, run_at)
    if policy is Backfill.UNTIL_CHECKIN and now < stay.check_in:
        return ScheduleDecision(Action.SEND_NOW, now)
    return ScheduleDecision(Action.SKIP, run_at)


def _booking_source_allowed(rule: dict[str, Any], source: str | None) -> bool:
    allowed = rule.get("booking_sources")
    if not allowed:
        return True
    if isinstance(allowed, str):
        allowed = [item.strip() for item in allowed.split(",") if item.strip()]
    haystack = str(source or "").lower()
    return any(str(item).lower() in haystack for item in allowed)


def rule_applies(rule: dict[str, Any], reservation: dict[str, Any], stay: StayWindow) -> bool:
    if not _booking_source_allowed(rule, reservation.get("booking_source")):
        return False
    guests = int(reservation.get("num_guests") or 1)
    if rule.get("min_nights") and stay.nights < int(rule["min_nights"]):
        return False
    if rule.get("min_guests") and guests < int(rule["min_guests"]):
        return False
    if rule.get("max_guests") and guests > int(rule["max_guests"]):
        return False
    return True


def idempotency_key(rule_id: Any, reservation_id: Any, run_at: datetime) -> str:
    stamp = run_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    return f"{rule_id}:{reservation_id}:{stamp}"
