"""
Data access for the ``profiles`` table and the ``verify_admin_access`` RPC.

Role text is decoded into ``auth_models.Role`` here, so nothing above this
module compares raw strings.
"""

from __future__ import annotations

from typing import Any

from auth_models import Profile, ProfileLookupError, Role, RoleVerification

PROFILES_TABLE = "profiles"
VERIFY_ADMIN_RPC = "verify_admin_access"


def _rows(response: Any) -> list[dict[str, Any]]:
    data = getattr(response, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return [row for row in data if isinstance(row, dict)]


def fetch_profile(client: Any, user_id: str) -> Profile:
    """Return the profile for ``user_id``.

    Raises ProfileLookupError when the query fails or no row exists; callers
    treat both as "admin status unknown".
    """
    try:
        response = (
            client.table(PROFILES_TABLE)
            .select("*")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:
        raise ProfileLookupError(f"profile query failed for {user_id}: {exc}") from exc
    rows = _rows(response)
    if not rows:
        raise ProfileLookupError(f"no profile row for {user_id}")
    return Profile.from_row(rows[0])


def verify_admin_access(client: Any, user_id: str) -> RoleVerification | None:
    """Server-side role check. Returns None when the RPC returns no rows."""
    try:
        response = client.rpc(VERIFY_ADMIN_RPC, {"user_id": user_id}).execute()
    except Exception as exc:
        raise ProfileLookupError(f"{VERIFY_ADMIN_RPC} failed for {user_id}: {exc}") from exc
    rows = _rows(response)
    return RoleVerification.from_row(rows[0]) if rows else None


def set_role(client: Any, user_id: str, role: Role) -> Profile | None:
    if role is Role.UNKNOWN:
        raise ValueError("refusing to write an unknown role")
    try:
        response = (
            client.table(PROFILES_TABLE)
            .update({"role": role.value})
            .eq("id", user_id)
            .execute()
        )
    except Exception as exc:
        raise ProfileLookupError(f"role update failed for {user_id}: {exc}") from exc
    rows = _rows(response)
    return Profile.from_row(rows[0]) if rows else None


def upsert_admin_profile(client: Any, user_id: str, email: str | None) -> Profile | None:
    """Create the profile row if the signup trigger never ran, as admin."""
    payload: dict[str, Any] = {"id": user_id, "role": Role.ADMIN.value}
    if email:
        payload["email"] = email
    try:
        response = client.table(PROFILES_TABLE).upsert(payload).execute()
    except Exception as exc:
        raise ProfileLookupError(f"profile upsert failed for {user_id}: {exc}") from exc
    rows = _rows(response)
    return Profile.from_row(rows[0]) if rows else None


def list_profiles(client: Any, role: Role | None = None, limit: int = 500) -> list[Profile]:
    try:
        query = client.table(PROFILES_TABLE).select("*")
        if role is not None:
            query = query.eq("role", role.value)
        response = query.limit(limit).execute()
    except Exception as exc:
        raise ProfileLookupError(f"profile listing failed: {exc}") from exc
    return [Profile.from_row(row) for row in _rows(response)]
