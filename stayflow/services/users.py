from collections import Counter
from typing import Any

from stayflow.core.fields import USER_FIELDS, map_fields
from stayflow.core.status import USER_ROLES, canonical_role
from stayflow.integrations.supabase_client import first_row, get_supabase_client, rows_of, storage_failure

USER_SELECT = "id,email,first_name,last_name,phone,role,is_active,created_at,updated_at"


def list_users(
    *,
    role: str | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    try:
        query = get_supabase_client().table("user_profiles").select(USER_SELECT, count="exact")
        if role:
            query = query.eq("role", role)
        if not include_inactive:
            query = query.eq("is_active", True)
        response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch users", exc) from exc
    return rows_of(response), int(response.count or 0)


def get_user(*, user_id: str) -> dict[str, Any] | None:
    try:
        response = get_supabase_client().table("user_profiles").select(USER_SELECT).eq("id", user_id).limit(1).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch user", exc) from exc
    return first_row(response)


def create_user(*, payload: dict[str, Any]) -> dict[str, Any]:
    """Create a profile row for an existing auth user (``id`` must be supplied)."""
    row = map_fields(payload, USER_FIELDS, defaults={"is_active": True})
    row["role"] = canonical_role(row.get("role"))
    if payload.get("id"):
        row["id"] = payload["id"]
    try:
        response = get_supabase_client().table("user_profiles").insert(row).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("create user", exc) from exc

    created = first_row(response)
    if not created:
        raise storage_failure("create user", RuntimeError("insert returned no rows"))
    return created


def update_user(*, user_id: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    updates = map_fields(payload, USER_FIELDS)
    if "role" in updates:
        updates["role"] = canonical_role(updates["role"])
    if not updates:
        return None
    try:
        response = get_supabase_client().table("user_profiles").update(updates).eq("id", user_id).execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("update user", exc) from exc
    return first_row(response)


def delete_user(*, user_id: str) -> dict[str, Any] | None:
    try:
        response = (
            get_supabase_client()
            .table("user_profiles")
            .update({"is_active": False})
            .eq("id", user_id)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("delete user", exc) from exc
    return first_row(response)


def user_stats() -> dict[str, Any]:
    try:
        response = get_supabase_client().table("user_profiles").select("role,is_active").execute()
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch user statistics", exc) from exc

    rows = rows_of(response)
    active = [row for row in rows if row.get("is_active", True)]
    counts = Counter(canonical_role(row.get("role")) for row in active)
    return {
        "total": len(rows),
        "active": len(active),
        "by_role": {role: counts.get(role, 0) for role in sorted(USER_ROLES)},
    }
