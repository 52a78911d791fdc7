from __future__ import annotations

import re
from typing import Any

RESERVATION_STATUSES = {
    "pending",
    "confirmed",
    "checked_in",
    "checked_out",
    "completed",
    "cancelled",
    "no_show",
}

CLEANING_TASK_STATUSES = {"pending", "in_progress", "completed", "cancelled"}
CLEANING_TASK_PRIORITIES = {"normal", "high"}
CLEANING_TASK_TYPES = {"checkout", "eco", "deep_clean"}

USER_ROLES = {"admin", "owner", "cleaner", "guest"}

_RESERVATION_ALIASES = {
    "new": "confirmed",
    "request": "pending",
    "checkedin": "checked_in",
    "checkedout": "checked_out",
    "canceled": "cancelled",
    "cancel": "cancelled",
    "black": "cancelled",
    "noshow": "no_show",
}


def _token(value: Any) -> str:
    token = str(value).strip().lower()
    token = re.sub(r"[\s\-]+", "_", token)
    return re.sub(r"_+", "_", token).strip("_")


def canonical_reservation_status(value: Any, *, default: str = "confirmed") -> str:
    if value is None or not str(value).strip():
        return default
    token = _token(value)
    mapped = _RESERVATION_ALIASES.get(token.replace("_", ""), token)
    if mapped in RESERVATION_STATUSES:
        return mapped
    return default


def canonical_role(value: Any) -> str:
    token = _token(value) if value else ""
    return token if token in USER_ROLES else "guest"
