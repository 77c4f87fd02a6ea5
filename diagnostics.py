"""
Operator diagnostics for admin access.

Every helper here returns a plain dict with a ``success`` key and never
raises, so it can be wired straight into buttons on the admin page or the
troubleshooting CLI.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

from auth_models import (
    AdminVerdict,
    AuthErrorCode,
    PrivilegeRepairUnavailable,
    Profile,
    ProfileLookupError,
    Role,
    RoleVerification,
    reconcile_admin_status,
)
from auth_session import AuthContext
from profiles import fetch_profile, list_profiles, set_role, upsert_admin_profile, verify_admin_access
from settings import AuthSettings, ensure_logger
from supabase_client import CredentialStore

DIAG_LOGGER = logging.getLogger("diagnostics")
FORCE_ADMIN_ACCESS_KEY = "FORCE_ADMIN_ACCESS"


def _failure(error: Any, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": str(error)}
    payload.update(extra)
    return payload


def _expires_in_hours(auth: AuthContext) -> float | None:
    session = auth.session
    if session is None:
        return None
    left = session.seconds_left()
    return round(left / 3600, 1) if left is not None else None


def inspect_admin_status(auth: AuthContext) -> dict[str, Any]:
    """Report whether the signed-in user is an admin, and whether the two
    independent checks (profile row, verify RPC) agree."""
    ensure_logger(DIAG_LOGGER)
    try:
        session = auth.session
        if session is None:
            DIAG_LOGGER.info("admin status: no active session")
            return {"success": False, "authenticated": False, "message": "No active session"}

        client = auth.credentials.standard_handle()
        user_id = session.user_id
        profile: Profile | None = None
        profile_error: str | None = None
        try:
            profile = fetch_profile(client, user_id)
        except ProfileLookupError as exc:
            profile_error = str(exc)
            DIAG_LOGGER.warning("profile fetch failed for %s: %s", user_id, exc)

        verification: RoleVerification | None = None
        try:
            verification = verify_admin_access(client, user_id)
        except ProfileLookupError as exc:
            DIAG_LOGGER.warning("verify_admin_access failed for %s: %s", user_id, exc)

        verdict = reconcile_admin_status(profile, verification)
        admin_check = verification.to_dict() if verification else None
        report: dict[str, Any] = {
            "authenticated": True,
            "user_id": user_id,
            "session": session.to_public_dict(),
            "expires_in_hours": _expires_in_hours(auth),
            "admin_check": admin_check,
            "verdict": verdict.value,
            "inconsistent": verdict is AdminVerdict.INCONSISTENT,
        }

        if profile is None:
            if verification is not None and not verification.user_exists:
                DIAG_LOGGER.info("profile row does not exist for %s", user_id)
            elif verification is not None and not verification.is_admin:
                DIAG_LOGGER.info("user %s exists but is not an admin", user_id)
            report.update(
                {"success": False, "error": profile_error, "is_admin": False, "profile": None}
            )
            return report

        if verdict is AdminVerdict.INCONSISTENT:
            DIAG_LOGGER.warning(
                "inconsistency detected for %s: profile says admin=%s, verify says admin=%s",
                user_id,
                profile.is_admin,
                verification.is_admin if verification else None,
            )
            report["error_code"] = AuthErrorCode.ROLE_INCONSISTENT.value

        report.update({"success": True, "is_admin": profile.is_admin, "profile": profile.to_dict()})
        return report
    except Exception as exc:
        DIAG_LOGGER.exception("inspect_admin_status failed")
        return _failure(exc)


def repair_admin_role(auth: AuthContext) -> dict[str, Any]:
    """Set the current user's role to admin through the elevated handle.

    Unconditional escalation: only reachable from operator contexts (the
    troubleshooting CLI, or the admin page with developer tools enabled).
    """
    ensure_logger(DIAG_LOGGER)
    try:
        session = auth.session
        if session is None:
            return _failure("You must be logged in", message="You must be logged in")
        elevated = auth.credentials.elevated_handle()
        if elevated is None:
            raise PrivilegeRepairUnavailable(
                "SUPABASE_SERVICE_ROLE_KEY is not configured; cannot perform privileged operation"
            )
        DIAG_LOGGER.warning("repairing admin role for user %s", session.user_id)
        profile = set_role(elevated, session.user_id, Role.ADMIN)
        if profile is None:
            # No row to update: the signup trigger never created one.
            profile = upsert_admin_profile(elevated, session.user_id, session.email)
        is_admin = auth.recheck_admin()
        return {
            "success": True,
            "message": "Admin status updated successfully",
            "profile": profile.to_dict() if profile else None,
            "is_admin": is_admin,
        }
    except PrivilegeRepairUnavailable as exc:
        DIAG_LOGGER.warning("%s", exc)
        return _failure(exc, error_code=AuthErrorCode.PRIVILEGE_REPAIR_UNAVAILABLE.value)
    except Exception as exc:
        DIAG_LOGGER.exception("repair_admin_role failed")
        return _failure(exc)


def force_admin_access_for_testing(
    storage: MutableMapping[str, Any], settings: AuthSettings
) -> dict[str, Any]:
    ensure_logger(DIAG_LOGGER)
    if not settings.dev_tools_enabled:
        return _failure("Forced admin access is disabled in this environment")
    try:
        storage[FORCE_ADMIN_ACCESS_KEY] = "true"
    except Exception as exc:
        DIAG_LOGGER.exception("force_admin_access_for_testing failed")
        return _failure(exc)
    DIAG_LOGGER.warning("admin access forced for testing in this tab")
    return {"success": True, "message": "Admin access forced for testing"}


def clear_forced_admin_access(storage: MutableMapping[str, Any]) -> None:
    storage.pop(FORCE_ADMIN_ACCESS_KEY, None)


def is_admin_access_forced(storage: MutableMapping[str, Any], settings: AuthSettings) -> bool:
    if not settings.dev_tools_enabled:
        return False
    return storage.get(FORCE_ADMIN_ACCESS_KEY) == "true"


# ----------------------------------------------------------------------
# Operator helpers (service-role key required)
# ----------------------------------------------------------------------


def _require_elevated(store: CredentialStore) -> Any:
    elevated = store.elevated_handle()
    if elevated is None:
        raise PrivilegeRepairUnavailable(
            "SUPABASE_SERVICE_ROLE_KEY is required for this operation"
        )
    return elevated


def _auth_users(elevated: Any) -> list[dict[str, Any]]:
    users = elevated.auth.admin.list_users()
    # Older clients wrap the list in a response object.
    users = getattr(users, "users", users) or []
    return [
        {"id": str(getattr(user, "id", "")), "email": getattr(user, "email", None)}
        for user in users
    ]


def _find_user(elevated: Any, email: str) -> dict[str, Any] | None:
    wanted = email.strip().lower()
    for user in _auth_users(elevated):
        if (user.get("email") or "").lower() == wanted:
            return user
    return None


def list_users(store: CredentialStore) -> dict[str, Any]:
    try:
        return {"success": True, "users": _auth_users(_require_elevated(store))}
    except Exception as exc:
        DIAG_LOGGER.warning("list_users failed: %s", exc)
        return _failure(exc)


def check_admin_by_email(store: CredentialStore, email: str) -> dict[str, Any]:
    try:
        elevated = _require_elevated(store)
        user = _find_user(elevated, email)
        if user is None:
            return _failure(f"User not found with email: {email}")
        verification = verify_admin_access(elevated, user["id"])
        if verification is None:
            return _failure("Unable to verify admin status", user=user)
        return {
            "success": True,
            "user": user,
            "is_admin": verification.is_admin,
            "admin_check": verification.to_dict(),
        }
    except Exception as exc:
        DIAG_LOGGER.warning("check_admin_by_email failed: %s", exc)
        return _failure(exc)


def grant_admin_by_email(store: CredentialStore, email: str) -> dict[str, Any]:
    try:
        elevated = _require_elevated(store)
        user = _find_user(elevated, email)
        if user is None:
            return _failure(f"User not found with email: {email}")
        DIAG_LOGGER.warning("granting admin role to %s", user["id"])
        profile = set_role(elevated, user["id"], Role.ADMIN)
        if profile is None:
            profile = upsert_admin_profile(elevated, user["id"], user.get("email"))
        return {"success": True, "user": user, "profile": profile.to_dict() if profile else None}
    except Exception as exc:
        DIAG_LOGGER.warning("grant_admin_by_email failed: %s", exc)
        return _failure(exc)


def list_admins(store: CredentialStore) -> dict[str, Any]:
    try:
        admins = list_profiles(_require_elevated(store), role=Role.ADMIN)
        return {"success": True, "admins": [profile.to_dict() for profile in admins]}
    except Exception as exc:
        DIAG_LOGGER.warning("list_admins failed: %s", exc)
        return _failure(exc)


def create_admin_user(store: CredentialStore, email: str, password: str) -> dict[str, Any]:
    """Create the auth user (or reset an existing user's password) and give
    it the admin role."""
    email = (email or "").strip().lower()
    if not email or not password:
        return _failure("Email and password are required")
    try:
        elevated = _require_elevated(store)
        user = _find_user(elevated, email)
        created = user is None
        if user is None:
            response = elevated.auth.admin.create_user(
                {"email": email, "password": password, "email_confirm": True}
            )
            new_user = getattr(response, "user", response)
            user = {"id": str(getattr(new_user, "id", "")), "email": getattr(new_user, "email", email)}
            DIAG_LOGGER.warning("created auth user %s", user["id"])
        else:
            elevated.auth.admin.update_user_by_id(user["id"], {"password": password})
            DIAG_LOGGER.warning("password reset for existing user %s", user["id"])
        profile = set_role(elevated, user["id"], Role.ADMIN)
        if profile is None:
            profile = upsert_admin_profile(elevated, user["id"], email)
        return {
            "success": True,
            "created": created,
            "user": user,
            "profile": profile.to_dict() if profile else None,
        }
    except Exception as exc:
        DIAG_LOGGER.warning("create_admin_user failed: %s", exc)
        return _failure(exc)
