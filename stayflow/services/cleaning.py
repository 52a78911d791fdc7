from datetime import datetime, timezone
from typing import Any

from stayflow.core.fields import CLEANING_TASK_FIELDS, map_fields
from stayflow.core.status import CLEANING_TASK_PRIORITIES, CLEANING_TASK_STATUSES, CLEANING_TASK_TYPES
from stayflow.core.timeutil import local_today
from stayflow.integrations.supabase_client import (
    first_row,
    get_supabase_client,
    rows_of,
    storage_failure,
    timed_execute,
)

CLEANING_TASK_SELECT = """
    *,
    properties(id,name,address,owner_id),
    room_units(
        id,
        unit_number,
        floor_number,
        access_code,
        access_instructions,
        room_types(id,name,max_guests)
    ),
    reservations(id,beds24_booking_id,booking_name,check_in_date,check_out_date,status),
    cleaner:user_profiles!cleaning_tasks_cleaner_id_fkey(id,first_name,last_name,role)
"""

CLEANING_SORT_COLUMNS = {"priority", "task_date", "created_at", "status"}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _apply_date_window(query, filters: dict[str, Any]):
    if filters.get("task_date"):
        return query.eq("task_date", filters["task_date"])
    date_from, date_to = filters.get("task_date_from"), filters.get("task_date_to")
    if not date_from and not date_to:
        return query.eq("task_date", local_today().isoformat())
    if date_from:
        query = query.gte("task_date", date_from)
    if date_to:
        query = query.lte("task_date", date_to)
    return query


def _apply_scope(query, filters: dict[str, Any]):
    if filters.get("property_id"):
        query = query.eq("property_id", filters["property_id"])
    if filters.get("property_ids") is not None:
        query = query.in_("property_id", list(filters["property_ids"]))
    if filters.get("cleaner_id"):
        query = query.eq("cleaner_id", filters["cleaner_id"])
    return query


def list_cleaning_tasks(
    *,
    filters: dict[str, Any] | None = None,
    limit: int = 50,
    offset: int = 0,
    sort_by: str | None = None,
    sort_dir: str = "desc",
) -> tuple[list[dict[str, Any]], int]:
    filters = filters or {}
    if filters.get("property_ids") == []:
        return [], 0

    sort_column = sort_by if sort_by in CLEANING_SORT_COLUMNS else "priority"
    try:
        query = _apply_scope(
            get_supabase_client().table("cleaning_tasks").select(CLEANING_TASK_SELECT, count="exact"),
            filters,
        )
        status = filters.get("status")
        if status:
            query = query.eq("status", status)
        if not filters.get("include_cancelled") and status != "cancelled":
            query = query.neq("status", "cancelled")
        query = _apply_date_window(query, filters)
        query = (
            query.order(sort_column, desc=str(sort_dir).lower() != "asc")
            .order("task_date")
            .order("created_at")
        )
        response = timed_execute(
            "db.cleaning_tasks.list",
            lambda: query.range(offset, offset + limit - 1).execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch cleaning tasks", exc) from exc
    return rows_of(response), int(response.count or 0)


def get_cleaning_task(*, task_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("cleaning_tasks")
            .select(CLEANING_TASK_SELECT)
            .eq("id", task_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch cleaning task", exc) from exc
    return first_row(response)


def build_task_row(payload: dict[str, Any]) -> dict[str, Any]:
    row = map_fields(
        payload,
        CLEANING_TASK_FIELDS,
        defaults={"task_type": "checkout", "status": "pending", "priority": "normal"},
    )
    if row.get("cleaner_id") and not row.get("assigned_at"):
        row["assigned_at"] = _utc_now_iso()
    return row


def transition_timestamps(updates: dict[str, Any], *, now_iso: str | None = None) -> dict[str, Any]:
    """Stamp ``started_at``/``completed_at``/``assigned_at`` unless supplied."""
    stamped = dict(updates)
    now_iso = now_iso or _utc_now_iso()
    status = stamped.get("status")
    if status == "in_progress" and not stamped.get("started_at"):
        stamped["started_at"] = now_iso
    if status == "completed" and not stamped.get("completed_at"):
        stamped["completed_at"] = now_iso
    if stamped.get("cleaner_id") and not stamped.get("assigned_at"):
        stamped["assigned_at"] = now_iso
    return stamped


def create_cleaning_task(*, payload: dict[str, Any]) -> dict[str, Any]:
    row = build_task_row(payload)
    try:
        response = get_supabase_client().table("cleaning_tasks").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create cleaning task", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create cleaning task", RuntimeError("insert returned no rows"))
    return created


def update_cleaning_task(*, task_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, CLEANING_TASK_FIELDS)
    if not updates:
        return None
    updates = transition_timestamps(updates)
    try:
        response = get_supabase_client().table("cleaning_tasks").update(updates).eq("id", task_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update cleaning task", exc) from exc
    return first_row(response)


def delete_cleaning_task(*, task_id: str) -> dict[str, Any] | None:
    try:
        response = get_supabase_client().table("cleaning_tasks").delete().eq("id", task_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete cleaning task", exc) from exc
    return first_row(response)


def assign_cleaner(*, task_id: str, cleaner_id: str) -> dict[str, Any] | None:
    updates = {"cleaner_id": cleaner_id, "assigned_at": _utc_now_iso()}
    try:
        response = get_supabase_client().table("cleaning_tasks").update(updates).eq("id", task_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("assign cleaner to task", exc) from exc
    return first_row(response)


def list_available_cleaners() -> list[dict[str, Any]]:
    try:
        response = (
            get_supabase_client()
            .table("user_profiles")
            .select("id,first_name,last_name,phone,is_active")
            .eq("role", "cleaner")
            .eq("is_active", True)
            .order("first_name")
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch available cleaners", exc) from exc

    return [
        {**row, "full_name": f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()}
        for row in rows_of(response)
    ]


def summarize_tasks(rows: list[dict[str, Any]]) -> dict[str, Any]:
    stats: dict[str, Any] = {
        "total": len(rows),
        "by_status": dict.fromkeys(sorted(CLEANING_TASK_STATUSES), 0),
        "by_priority": dict.fromkeys(sorted(CLEANING_TASK_PRIORITIES), 0),
        "by_type": dict.fromkeys(sorted(CLEANING_TASK_TYPES), 0),
    }
    for row in rows:
        for bucket, column in (("by_status", "status"), ("by_priority", "priority"), ("by_type", "task_type")):
            value = row.get(column)
            if value in stats[bucket]:
                stats[bucket][value] += 1
    return stats


def cleaning_task_stats(*, filters: dict[str, Any] | None = None) -> dict[str, Any]:
    filters = filters or {}
    if filters.get("property_ids") == []:
        return summarize_tasks([])
    try:
        query = _apply_scope(
            get_supabase_client().table("cleaning_tasks").select("status,priority,task_type"),
            filters,
        )
        response = _apply_date_window(query, filters).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch cleaning task statistics", exc) from exc
    return summarize_tasks(rows_of(response))
