from fastapi import HTTPException, status

from stayflow.core.auth import AuthContext
from stayflow.services.properties import list_properties


def owned_property_ids(auth: AuthContext) -> list[str] | None:
    """Property ids an owner may see; ``None`` for admins (no restriction)."""
    if auth.owner_scope is None:
        return None
    try:
        rows = list_properties(owner_id=auth.owner_scope, include_room_types=False)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [str(row["id"]) for row in rows]
