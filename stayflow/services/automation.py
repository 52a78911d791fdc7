import logging
from datetime import datetime, timezone
from typing import Any

from stayflow.core.fields import MESSAGE_RULE_FIELDS, MESSAGE_TEMPLATE_FIELDS, map_fields
from stayflow.integrations.supabase_client import (
    first_row,
    get_supabase_client,
    is_unique_violation,
    rows_of,
    storage_failure,
    timed_execute,
)

logger = logging.getLogger(__name__)

RULE_WITH_TEMPLATES_SELECT = """
    *,
    message_rule_templates(
        is_primary,
        priority,
        message_templates(*)
    )
"""

SCHEDULED_MESSAGE_SELECT = """
    *,
    message_templates(id,name,channel,language,content),
    message_rules(id,code,name,type)
"""

RESERVATION_CONTEXT_SELECT = """
    *,
    properties(
        name,
        address,
        timezone,
        wifi_name,
        wifi_password,
        check_in_instructions,
        house_rules,
        emergency_contact,
        access_time,
        departure_time
    ),
    room_types(name,room_amenities,bed_configuration,max_guests),
    room_units(unit_number,access_code,access_instructions,unit_amenities),
    message_threads(id,status)
"""

ACTIVE_SCHEDULE_STATUSES = ("pending", "processing", "sent")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _templates_of(rule: dict[str, Any]) -> list[dict[str, Any]]:
    templates = []
    for link in rule.get("message_rule_templates") or []:
        template = link.get("message_templates")
        if not template or template.get("enabled") is False:
            continue
        templates.append(
            {**template, "is_primary": bool(link.get("is_primary")), "priority": int(link.get("priority") or 0)}
        )
    templates.sort(key=lambda item: (not item["is_primary"], -item["priority"]))
    return templates


def list_enabled_rules_with_templates(*, property_id: str | None = None) -> list[dict[str, Any]]:
    """Enabled rules for a property (plus global rules), each with ordered ``templates``.

    Rules without a usable template are dropped.
    """
    try:
        query = (
            get_supabase_client()
            .table("message_rules")
            .select(RULE_WITH_TEMPLATES_SELECT)
            .eq("enabled", True)
        )
        if property_id:
            query = query.or_(f"property_id.eq.{property_id},property_id.is.null")
        else:
            query = query.is_("property_id", "null")
        response = timed_execute("db.message_rules.enabled", lambda: query.order("code").execute())
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch message rules", exc) from exc

    rules = []
    for row in rows_of(response):
        templates = [template for template in _templates_of(row) if template.get("channel")]
        if not templates:
            logger.warning("Message rule %s has no usable templates", row.get("code"))
            continue
        rule = {key: value for key, value in row.items() if key != "message_rule_templates"}
        rule["templates"] = templates
        rules.append(rule)
    return rules


def list_message_rules(*, property_id: str | None = None) -> list[dict[str, Any]]:
    try:
        query = get_supabase_client().table("message_rules").select(RULE_WITH_TEMPLATES_SELECT)
        if property_id:
            query = query.or_(f"property_id.eq.{property_id},property_id.is.null")
        response = query.order("code").execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch message rules", exc) from exc

    rules = []
    for row in rows_of(response):
        rule = {key: value for key, value in row.items() if key != "message_rule_templates"}
        rule["templates"] = _templates_of(row)
        rules.append(rule)
    return rules


def get_message_rule(*, rule_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("message_rules")
            .select(RULE_WITH_TEMPLATES_SELECT)
            .eq("id", rule_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch message rule", exc) from exc

    row = first_row(response)
    if not row:
        return None
    rule = {key: value for key, value in row.items() if key != "message_rule_templates"}
    rule["templates"] = _templates_of(row)
    return rule


def create_message_rule(*, payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(payload, MESSAGE_RULE_FIELDS, defaults={"enabled": True, "backfill": "none"})
    try:
        response = get_supabase_client().table("message_rules").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create message rule", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create message rule", RuntimeError("insert returned no rows"))
    return created


def update_message_rule(*, rule_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, MESSAGE_RULE_FIELDS)
    if not updates:
        return None
    try:
        response = get_supabase_client().table("message_rules").update(updates).eq("id", rule_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update message rule", exc) from exc
    return first_row(response)


def delete_message_rule(*, rule_id: str) -> dict[str, Any] | None:
    try:
        response = get_supabase_client().table("message_rules").delete().eq("id", rule_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete message rule", exc) from exc
    return first_row(response)


def link_rule_template(*, rule_id: str, template_id: str, is_primary: bool = False, priority: int = 0) -> dict[str, Any]:
    row = {"rule_id": rule_id, "template_id": template_id, "is_primary": is_primary, "priority": priority}
    try:
        response = (
            get_supabase_client()
            .table("message_rule_templates")
            .upsert(row, on_conflict="rule_id,template_id")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("link message template", exc) from exc
    return first_row(response) or row


def list_message_templates(
    *,
    channel: str | None = None,
    language: str | None = None,
    property_id: str | None = None,
) -> list[dict[str, Any]]:
    try:
        query = get_supabase_client().table("message_templates").select("*")
        if channel:
            query = query.eq("channel", channel)
        if language:
            query = query.eq("language", language)
        if property_id:
            query = query.or_(f"property_id.eq.{property_id},property_id.is.null")
        response = query.order("name").execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch message templates", exc) from exc
    return rows_of(response)


def get_message_template(*, template_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client().table("message_templates").select("*").eq("id", template_id).limit(1).execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch message template", exc) from exc
    return first_row(response)


def create_message_template(*, payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(payload, MESSAGE_TEMPLATE_FIELDS, defaults={"enabled": True, "language": "en"})
    try:
        response = get_supabase_client().table("message_templates").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create message template", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create message template", RuntimeError("insert returned no rows"))
    return created


def update_message_template(*, template_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, MESSAGE_TEMPLATE_FIELDS)
    if not updates:
        return None
    try:
        response = (
            get_supabase_client().table("message_templates").update(updates).eq("id", template_id).execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update message template", exc) from exc
    return first_row(response)


def delete_message_template(*, template_id: str) -> dict[str, Any] | None:
    try:
        response = get_supabase_client().table("message_templates").delete().eq("id", template_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete message template", exc) from exc
    return first_row(response)


def get_reservation_context(*, reservation_id: str) -> dict[str, Any] | None:
    """Reservation with the property, room and thread data message payloads need."""
    try:
        response = (
            get_supabase_client()
            .table("reservations")
            .select(RESERVATION_CONTEXT_SELECT)
            .eq("id", reservation_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservation", exc) from exc
    return first_row(response)


def list_reservation_contexts(
    *,
    created_since: str | None = None,
    check_in_between: tuple[str, str] | None = None,
    check_out_between: tuple[str, str] | None = None,
) -> list[dict[str, Any]]:
    try:
        query = (
            get_supabase_client()
            .table("reservations")
            .select(RESERVATION_CONTEXT_SELECT)
            .neq("status", "cancelled")
        )
        if created_since:
            query = query.gte("created_at", created_since)
        if check_in_between:
            query = query.gte("check_in_date", check_in_between[0]).lte("check_in_date", check_in_between[1])
        if check_out_between:
            query = query.gte("check_out_date", check_out_between[0]).lte("check_out_date", check_out_between[1])
        response = timed_execute("db.reservations.automation_scan", lambda: query.execute())
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch reservations for automation", exc) from exc
    return rows_of(response)


def insert_scheduled_message(row: dict[str, Any]) -> tuple[dict[str, Any] | None, bool]:
    """Insert a scheduled message; ``(row, False)`` when the idempotency key already exists."""
    client = get_supabase_client()
    try:
        response = client.table("scheduled_messages").insert(row).execute()
        return first_row(response), True
    except Exception as exc:  # noqa: BLE001
        if not is_unique_violation(exc):
            raise storage_failure("schedule message", exc) from exc

    try:
        existing = first_row(
            client.table("scheduled_messages")
            .select("*")
            .eq("idempotency_key", row["idempotency_key"])
            .limit(1)
            .execute()
        )
        if existing and existing.get("status") == "cancelled":
            existing = first_row(
                client.table("scheduled_messages")
                .update({"status": row.get("status", "pending"), "run_at": row["run_at"], "last_error": None})
                .eq("id", existing["id"])
                .execute()
            ) or existing
            return existing, True
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("schedule message", exc) from exc
    return existing, False


def list_scheduled_messages(
    *,
    reservation_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    try:
        query = get_supabase_client().table("scheduled_messages").select(SCHEDULED_MESSAGE_SELECT, count="exact")
        if reservation_id:
            query = query.eq("reservation_id", reservation_id)
        if status:
            query = query.eq("status", status)
        response = query.order("run_at").range(offset, offset + limit - 1).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch scheduled messages", exc) from exc
    return rows_of(response), int(response.count or 0)


def list_due_scheduled_messages(*, limit: int = 50, now_iso: str | None = None) -> list[dict[str, Any]]:
    try:
        response = timed_execute(
            "db.scheduled_messages.due",
            lambda: get_supabase_client()
            .table("scheduled_messages")
            .select("*, message_templates(*)")
            .eq("status", "pending")
            .lte("run_at", now_iso or _utc_now_iso())
            .order("run_at")
            .limit(limit)
            .execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch due scheduled messages", exc) from exc
    return rows_of(response)


def claim_scheduled_message(*, scheduled_id: str) -> bool:
    """Move a pending row to ``processing``; ``False`` when another dispatcher took it."""
    try:
        response = (
            get_supabase_client()
            .table("scheduled_messages")
            .update({"status": "processing", "updated_at": _utc_now_iso()})
            .eq("id", scheduled_id)
            .eq("status", "pending")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("claim scheduled message", exc) from exc
    return first_row(response) is not None


def mark_scheduled_message(
    *,
    scheduled_id: str,
    status: str,
    last_error: str | None = None,
    thread_id: str | None = None,
) -> None:
    updates: dict[str, Any] = {"status": status, "last_error": last_error, "updated_at": _utc_now_iso()}
    if status == "sent":
        updates["sent_at"] = updates["updated_at"]
    if thread_id:
        updates["thread_id"] = thread_id
    try:
        get_supabase_client().table("scheduled_messages").update(updates).eq("id", scheduled_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update scheduled message", exc) from exc


def cancel_pending_for_reservation(*, reservation_id: str) -> int:
    client = get_supabase_client()
    try:
        response = client.rpc("cancel_pending_for_reservation", {"p_reservation_id": reservation_id}).execute()
        data = getattr(response, "data", None)
        return int(data) if isinstance(data, (int, float)) else len(data or [])
    except Exception as exc:  # noqa: BLE001
        logger.warning("cancel_pending_for_reservation rpc failed, updating directly: %s", exc)

    try:
        response = (
            client.table("scheduled_messages")
            .update({"status": "cancelled", "updated_at": _utc_now_iso()})
            .eq("reservation_id", reservation_id)
            .eq("status", "pending")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("cancel scheduled messages", exc) from exc
    return len(rows_of(response))


def active_rule_ids_for_reservation(*, reservation_id: str) -> set[str]:
    try:
        response = (
            get_supabase_client()
            .table("scheduled_messages")
            .select("rule_id")
            .eq("reservation_id", reservation_id)
            .in_("status", list(ACTIVE_SCHEDULE_STATUSES))
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch scheduled messages", exc) from exc
    return {str(row["rule_id"]) for row in rows_of(response) if row.get("rule_id")}
