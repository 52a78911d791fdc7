"""Materialise and dispatch automated guest messages.

``plan_messages`` is pure and shared by preview and generation. Everything
else reads and writes through the service layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from stayflow.core.config import settings
from stayflow.core.timeutil import iso_utc, local_today, utc_now
from stayflow.scheduling.rules import (
    Action,
    RuleError,
    RuleType,
    ScheduleDecision,
    backfill_policy,
    compute_run_at,
    decide,
    idempotency_key,
    rule_applies,
    rule_timezone,
    rule_type,
    stay_window,
)
from stayflow.scheduling.templates import (
    build_payload,
    channel_for_booking_source,
    language_for_phone,
    render_template,
    select_template,
)
from stayflow.schemas.common import DispatchSummary, GenerationSummary
from stayflow.services.automation import (
    active_rule_ids_for_reservation,
    cancel_pending_for_reservation,
    claim_scheduled_message,
    get_message_template,
    get_reservation_context,
    insert_scheduled_message,
    list_due_scheduled_messages,
    list_enabled_rules_with_templates,
    list_reservation_contexts,
    mark_scheduled_message,
)
from stayflow.services.messaging import find_or_create_thread, send_message
from stayflow.services.reservations import schedule_fields_changed

logger = logging.getLogger(__name__)

CHECKOUT_RULE_TYPES = {RuleType.BEFORE_CHECKOUT_HOURS, RuleType.AFTER_DEPARTURE_DAYS}
PAST_DUE_NOTE = "Run time passed before the message was scheduled."


@dataclass(frozen=True)
class PlannedMessage:
    rule: dict[str, Any]
    template: dict[str, Any] | None
    decision: ScheduleDecision
    scheduled_for: datetime
    channel: str
    language: str
    key: str

    @property
    def will_create(self) -> bool:
        return self.template is not None and self.decision.creates_row


def _checkout_rule(rule: dict[str, Any]) -> bool:
    return rule_type(rule) in CHECKOUT_RULE_TYPES


def _thread_id(reservation: dict[str, Any]) -> str | None:
    threads = reservation.get("message_threads")
    if isinstance(threads, dict):
        threads = [threads]
    for thread in threads or []:
        if thread.get("id"):
            return str(thread["id"])
    return None


def _merge(total: GenerationSummary, part: GenerationSummary) -> None:
    for field in GenerationSummary.model_fields:
        setattr(total, field, getattr(total, field) + getattr(part, field))


def plan_messages(
    reservation: dict[str, Any],
    rules: Iterable[dict[str, Any]],
    *,
    now: datetime,
    window_days: int | None = None,
    skip_rule_ids: set[str] | None = None,
) -> list[PlannedMessage]:
    channel = channel_for_booking_source(reservation.get("booking_source"))
    language = reservation.get("guest_language") or language_for_phone(reservation.get("booking_phone"))
    skip_rule_ids = skip_rule_ids or set()

    plans = []
    for rule in rules:
        if str(rule.get("id")) in skip_rule_ids:
            continue
        try:
            stay = stay_window(reservation, tz_name=rule_timezone(rule))
            if not rule_applies(rule, reservation, stay):
                continue
            run_at = compute_run_at(rule, stay, now=now)
            decision = decide(rule, run_at, stay, now, window_days=window_days)
        except RuleError as exc:
            logger.warning("Skipping rule %s for reservation %s: %s", rule.get("code"), reservation.get("id"), exc)
            continue
        plans.append(
            PlannedMessage(
                rule=rule,
                template=select_template(rule.get("templates") or [], channel, language),
                decision=decision,
                scheduled_for=run_at,
                channel=channel,
                language=language,
                # Keyed on the rule's own send time so repeated runs agree.
                key=idempotency_key(rule.get("id"), reservation.get("id"), run_at),
            )
        )
    return plans


def generate_for_reservation(
    reservation: dict[str, Any],
    *,
    now: datetime | None = None,
    realtime: bool = True,
    rule_filter: Callable[[dict[str, Any]], bool] | None = None,
    skip_rule_ids: set[str] | None = None,
) -> GenerationSummary:
    """Create scheduled_messages rows for one reservation.

    ``realtime`` generation (new booking, date change) ignores the look-ahead
    window; periodic runs only materialise messages due within it.
    """
    summary = GenerationSummary(reservations=1)
    if reservation.get("status") == "cancelled":
        return summary

    now = now or utc_now()
    rules = list_enabled_rules_with_templates(property_id=reservation.get("property_id"))
    if rule_filter is not None:
        rules = [rule for rule in rules if rule_filter(rule)]
    plans = plan_messages(
        reservation,
        rules,
        now=now,
        window_days=None if realtime else settings.message_generation_window_days,
        skip_rule_ids=skip_rule_ids,
    )

    thread_id = _thread_id(reservation)
    payload = None
    for plan in plans:
        action = plan.decision.action
        if action is Action.DROP:
            summary.dropped += 1
            continue
        if action is Action.DEFER:
            summary.deferred += 1
            continue
        if plan.template is None:
            summary.failed += 1
            continue

        if thread_id is None:
            thread_id = str(find_or_create_thread(reservation_id=reservation["id"])["id"])
        if payload is None:
            payload = build_payload(reservation)

        row = {
            "rule_id": plan.rule.get("id"),
            "template_id": plan.template.get("id"),
            "reservation_id": reservation["id"],
            "thread_id": thread_id,
            "channel": plan.channel,
            "run_at": iso_utc(plan.decision.run_at),
            "status": plan.decision.row_status,
            "idempotency_key": plan.key,
            "payload": payload,
            "last_error": PAST_DUE_NOTE if action is Action.SKIP else None,
        }
        _, created = insert_scheduled_message(row)
        if not created:
            summary.duplicates += 1
        elif action is Action.SKIP:
            summary.skipped += 1
        elif action is Action.SEND_NOW:
            summary.send_now += 1
        else:
            summary.scheduled += 1

    logger.info("Message generation for reservation %s: %s", reservation.get("id"), summary.model_dump())
    return summary


def _generate_many(
    reservations: list[dict[str, Any]],
    *,
    now: datetime,
    rule_filter: Callable[[dict[str, Any]], bool] | None = None,
    skip_active: bool = False,
) -> GenerationSummary:
    total = GenerationSummary()
    for reservation in reservations:
        try:
            skip = active_rule_ids_for_reservation(reservation_id=reservation["id"]) if skip_active else None
            part = generate_for_reservation(
                reservation,
                now=now,
                realtime=False,
                rule_filter=rule_filter,
                skip_rule_ids=skip,
            )
        except RuntimeError:
            logger.exception("Message generation failed for reservation %s", reservation.get("id"))
            total.reservations += 1
            total.failed += 1
            continue
        _merge(total, part)
    return total


def generate_for_recent_reservations(*, minutes: int | None = None, now: datetime | None = None) -> GenerationSummary:
    """Catch reservations created recently whose real-time generation may have been missed."""
    now = now or utc_now()
    minutes = minutes or settings.message_recent_reservation_minutes
    reservations = list_reservation_contexts(created_since=iso_utc(now - timedelta(minutes=minutes)))
    return _generate_many(reservations, now=now)


def reconcile_future_arrivals(*, days_ahead: int | None = None, now: datetime | None = None) -> GenerationSummary:
    """Fill gaps for upcoming stays, leaving rules that already have pending, processing or sent rows alone."""
    now = now or utc_now()
    days_ahead = days_ahead or settings.message_reconcile_days_ahead
    today = local_today(now=now)

    arrivals = list_reservation_contexts(
        check_in_between=((today - timedelta(days=5)).isoformat(), (today + timedelta(days=days_ahead)).isoformat())
    )
    departures = list_reservation_contexts(
        check_out_between=((today - timedelta(days=2)).isoformat(), (today + timedelta(days=7)).isoformat())
    )

    total = _generate_many(arrivals, now=now, rule_filter=lambda rule: not _checkout_rule(rule), skip_active=True)
    _merge(total, _generate_many(departures, now=now, rule_filter=_checkout_rule, skip_active=True))
    return total


def handle_reservation_update(
    before: dict[str, Any] | None,
    after: dict[str, Any],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Cancel and regenerate pending messages when a reservation's stay moves."""
    reservation_id = str(after["id"])
    if after.get("status") == "cancelled":
        cancelled = cancel_pending_for_reservation(reservation_id=reservation_id)
        return {"cancelled": cancelled, "summary": None}
    if before is not None and not schedule_fields_changed(before, after):
        return {"cancelled": 0, "summary": None}

    cancelled = cancel_pending_for_reservation(reservation_id=reservation_id)
    context = get_reservation_context(reservation_id=reservation_id) or after
    summary = generate_for_reservation(context, now=now, realtime=True)
    logger.info("Rescheduled messages for reservation %s (cancelled=%s)", reservation_id, cancelled)
    return {"cancelled": cancelled, "summary": summary}


def on_reservation_saved(
    reservation: dict[str, Any],
    *,
    previous: dict[str, Any] | None = None,
) -> GenerationSummary | None:
    """Hook for write paths; scheduling problems are logged, never raised."""
    try:
        if previous is None:
            context = get_reservation_context(reservation_id=reservation["id"]) or reservation
            return generate_for_reservation(context, realtime=True)
        return handle_reservation_update(previous, reservation)["summary"]
    except RuntimeError:
        logger.exception("Message scheduling failed for reservation %s", reservation.get("id"))
        return None


def regenerate_for_reservation(*, reservation_id: str, now: datetime | None = None) -> dict[str, Any] | None:
    context = get_reservation_context(reservation_id=reservation_id)
    if not context:
        return None
    cancelled = cancel_pending_for_reservation(reservation_id=reservation_id)
    return {"cancelled": cancelled, "summary": generate_for_reservation(context, now=now, realtime=True)}


def preview_for_reservation(*, reservation_id: str, now: datetime | None = None) -> list[dict[str, Any]] | None:
    context = get_reservation_context(reservation_id=reservation_id)
    if not context:
        return None
    rules = list_enabled_rules_with_templates(property_id=context.get("property_id"))
    plans = plan_messages(context, rules, now=now or utc_now())
    return [
        {
            "rule_id": str(plan.rule.get("id")),
            "rule_code": plan.rule.get("code"),
            "rule_type": str(rule_type(plan.rule)),
            "backfill": str(backfill_policy(plan.rule)),
            "scheduled_for": plan.scheduled_for,
            "run_at": plan.decision.run_at,
            "action": str(plan.decision.action),
            "will_create": plan.will_create,
            "status": plan.decision.row_status if plan.will_create else None,
            "channel": plan.channel,
            "language": plan.language,
            "template_id": str(plan.template["id"]) if plan.template and plan.template.get("id") else None,
        }
        for plan in plans
    ]


def process_scheduled_message(row: dict[str, Any]) -> str:
    """Render and send one due message; returns the resulting status."""
    scheduled_id = str(row["id"])
    try:
        reservation = get_reservation_context(reservation_id=row["reservation_id"])
        if not reservation or reservation.get("status") == "cancelled":
            mark_scheduled_message(scheduled_id=scheduled_id, status="cancelled", last_error="Reservation cancelled.")
            return "cancelled"

        template = row.get("message_templates") or (
            get_message_template(template_id=row["template_id"]) if row.get("template_id") else None
        )
        if not template or not template.get("content"):
            raise ValueError("Scheduled message has no template content.")

        content = render_template(template["content"], row.get("payload") or build_payload(reservation))
        thread_id = row.get("thread_id") or _thread_id(reservation)
        if not thread_id:
            thread_id = find_or_create_thread(reservation_id=reservation["id"])["id"]
        send_message(
            thread_id=str(thread_id),
            channel=row.get("channel") or template.get("channel") or "email",
            content=content,
            origin_role="system",
        )
        mark_scheduled_message(scheduled_id=scheduled_id, status="sent", thread_id=str(thread_id))
        return "sent"
    except (RuntimeError, ValueError) as exc:
        logger.exception("Scheduled message %s failed", scheduled_id)
        mark_scheduled_message(scheduled_id=scheduled_id, status="failed", last_error=str(exc))
        return "failed"


def dispatch_due_messages(*, now: datetime | None = None, limit: int | None = None) -> DispatchSummary:
    if not settings.scheduled_dispatch_enabled:
        logger.debug("Scheduled message dispatch disabled outside production")
        return DispatchSummary(enabled=False)

    rows = list_due_scheduled_messages(
        limit=limit or settings.message_dispatch_batch_size,
        now_iso=iso_utc(now or utc_now()),
    )
    summary = DispatchSummary(due=len(rows))
    for row in rows:
        if not claim_scheduled_message(scheduled_id=str(row["id"])):
            logger.info("Scheduled message %s already claimed by another dispatcher", row["id"])
            summary.already_claimed += 1
            continue
        status = process_scheduled_message(row)
        if status == "sent":
            summary.sent += 1
        elif status == "cancelled":
            summary.cancelled += 1
        else:
            summary.failed += 1
    if rows:
        logger.info("Dispatched scheduled messages: %s", summary.model_dump())
    return summary
