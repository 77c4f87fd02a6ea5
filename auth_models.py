"""
Types shared by the admin session layer: roles, sessions, profiles, results.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class AdminAuthError(Exception):
    """Base class for errors raised inside the session layer."""


class ConfigurationMissing(AdminAuthError):
    pass


class ProfileLookupError(AdminAuthError):
    pass


class PrivilegeRepairUnavailable(AdminAuthError):
    pass


class AuthErrorCode(str, Enum):
    INVALID_INPUT = "invalid_input"
    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK_ERROR = "network_error"
    CONFIGURATION_MISSING = "configuration_missing"
    SESSION_EXPIRED = "session_expired"
    PRIVILEGE_REPAIR_UNAVAILABLE = "privilege_repair_unavailable"
    ROLE_INCONSISTENT = "role_inconsistent"


class Role(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "Role":
        """Decode the free-text ``profiles.role`` column.

        Matching is exact: only the literal ``"admin"`` grants privilege.
        """
        if raw == cls.ADMIN.value:
            return cls.ADMIN
        if raw == cls.CUSTOMER.value:
            return cls.CUSTOMER
        return cls.UNKNOWN


class AdminVerdict(str, Enum):
    CONFIRMED_ADMIN = "confirmed_admin"
    CONFIRMED_NOT_ADMIN = "confirmed_not_admin"
    INDETERMINATE = "indeterminate"
    INCONSISTENT = "inconsistent"


class AuthState(str, Enum):
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class SessionInfo:
    access_token: str
    refresh_token: str
    expires_at: float | None
    user_id: str
    email: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at

    def seconds_left(self, now: float | None = None) -> float | None:
        if self.expires_at is None:
            return None
        return self.expires_at - (time.time() if now is None else now)

    def to_public_dict(self) -> dict[str, Any]:
        """Session fields safe to show on a diagnostics page (no tokens)."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_supabase(cls, session: Any) -> "SessionInfo | None":
        if session is None:
            return None
        user = getattr(session, "user", None)
        user_id = getattr(user, "id", None)
        access_token = getattr(session, "access_token", None)
        if not user_id or not access_token:
            return None
        expires_at = getattr(session, "expires_at", None)
        return cls(
            access_token=access_token,
            refresh_token=getattr(session, "refresh_token", "") or "",
            expires_at=float(expires_at) if expires_at is not None else None,
            user_id=str(user_id),
            email=getattr(user, "email", None),
        )


@dataclass(frozen=True)
class Profile:
    id: str
    role: Role = Role.UNKNOWN
    raw_role: str | None = None
    email: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    phone_number: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Profile":
        raw_role = row.get("role")
        return cls(
            id=str(row["id"]),
            role=Role.parse(raw_role),
            raw_role=raw_role,
            email=row.get("email"),
            full_name=row.get("full_name"),
            avatar_url=row.get("avatar_url"),
            phone_number=row.get("phone_number"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["role"] = self.raw_role
        data.pop("raw_role", None)
        return data


@dataclass(frozen=True)
class RoleVerification:
    user_exists: bool
    is_admin: bool
    user_role: str | None = None
    auth_user_id: str | None = None
    email: str | None = None
    email_in_profile: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RoleVerification":
        auth_user_id = row.get("auth_user_id")
        return cls(
            user_exists=bool(row.get("user_exists")),
            is_admin=bool(row.get("is_admin")),
            user_role=row.get("user_role"),
            auth_user_id=str(auth_user_id) if auth_user_id is not None else None,
            email=row.get("email"),
            email_in_profile=row.get("email_in_profile"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AuthResult:
    success: bool
    error_code: AuthErrorCode | None = None
    error_message: str | None = None
    user_id: str | None = None
    email: str | None = None
    is_admin: bool | None = None


def reconcile_admin_status(
    profile: Profile | None,
    verification: RoleVerification | None,
) -> AdminVerdict:
    """Combine the profile-based and RPC-based admin checks into one verdict.

    A missing input never counts as a "no": with neither source available the
    verdict is INDETERMINATE, and disagreement is INCONSISTENT rather than
    being resolved in favour of either side.
    """
    profile_says = profile.is_admin if profile is not None else None
    if verification is not None and verification.user_exists:
        rpc_says: bool | None = verification.is_admin
    elif verification is not None:
        rpc_says = False
    else:
        rpc_says = None

    if profile_says is None and rpc_says is None:
        return AdminVerdict.INDETERMINATE
    if profile_says is not None and rpc_says is not None and profile_says != rpc_says:
        return AdminVerdict.INCONSISTENT
    decided = profile_says if profile_says is not None else rpc_says
    return AdminVerdict.CONFIRMED_ADMIN if decided else AdminVerdict.CONFIRMED_NOT_ADMIN
