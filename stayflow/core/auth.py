from dataclasses import dataclass
import hashlib

from fastapi import Depends, HTTPException, Request, status

from stayflow.core.cache import TTLCache
from stayflow.core.status import canonical_role
from stayflow.integrations.supabase_client import first_row, get_supabase_client, storage_failure

STAFF_ROLES = {"admin", "owner"}


@dataclass
class AuthContext:
    user_id: str
    email: str | None
    role: str
    access_token: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def owner_scope(self) -> str | None:
        """Owner id to filter property data by; ``None`` means unrestricted."""
        return self.user_id if self.role == "owner" else None


_ROLE_CACHE = TTLCache(60)
_AUTH_CACHE = TTLCache(30)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Bearer token.")
    token = token.strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bearer token is empty.")
    return token


def _lookup_role(user_id: str) -> str:
    cached = _ROLE_CACHE.get(user_id)
    if cached:
        return cached

    try:
        response = (
            get_supabase_client()
            .table("user_profiles")
            .select("role,is_active")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # noqa: BLE001
        raise storage_failure("fetch user role", exc) from exc
    profile = first_row(response) or {}
    if profile.get("is_active") is False:
        role = "guest"
    else:
        role = canonical_role(profile.get("role"))
    _ROLE_CACHE.set(user_id, role)
    return role


def verify_access_token(access_token: str) -> AuthContext:
    cache_key = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
    cached = _AUTH_CACHE.get(cache_key)
    if cached:
        return cached

    try:
        user_response = get_supabase_client().auth.get_user(access_token)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access token.",
        ) from exc

    user = getattr(user_response, "user", None)
    if not user or not getattr(user, "id", None):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authenticated user not found.",
        )

    context = AuthContext(
        user_id=str(user.id),
        email=getattr(user, "email", None),
        role=_lookup_role(str(user.id)),
        access_token=access_token,
    )
    _AUTH_CACHE.set(cache_key, context)
    return context


def get_current_auth(request: Request) -> AuthContext:
    return verify_access_token(_bearer_token(request))


def require_admin(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if auth.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required.")
    return auth


def require_staff(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if auth.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required.")
    return auth


def require_cleaning_access(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if auth.role not in STAFF_ROLES | {"cleaner"}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cleaning access required.")
    return auth


def ensure_property_access(auth: AuthContext, property_row: dict) -> None:
    if auth.owner_scope is None:
        return
    if property_row.get("owner_id") == auth.owner_scope:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You are not allowed to access this property.",
    )
