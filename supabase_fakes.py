"""
In-memory stand-ins for Supabase handles, used by the test modules.

``FakeBackend`` holds users, profiles and knobs for failure modes;
``FakeBackend.factory`` plugs into ``CredentialStore(client_factory=...)``.
"""

from __future__ import annotations

import itertools
import threading
import time
from types import SimpleNamespace
from typing import Any

import httpx

from settings import AuthSettings

URL = "https://example.supabase.co"
ANON_KEY = "anon-key"
SERVICE_KEY = "service-key"


def make_settings(**overrides: Any) -> AuthSettings:
    values: dict[str, Any] = {
        "supabase_url": URL,
        "supabase_anon_key": ANON_KEY,
        "supabase_service_key": SERVICE_KEY,
    }
    values.update(overrides)
    return AuthSettings(**values)


class FakeAuthError(Exception):
    pass


class FakeBackend:
    def __init__(self, session_seconds: int = 24 * 3600) -> None:
        self.session_seconds = session_seconds
        self.users: dict[str, dict[str, Any]] = {}
        self.profiles: dict[str, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.verify_override: dict[str, Any] | None = None
        self.profile_error: str | None = None
        self.network_down = False
        self.refresh_gate: threading.Event | None = None
        self.refresh_fail = False
        self.refresh_calls = 0
        self.sign_in_calls = 0
        self.sign_out_calls = 0
        self.clients: list["FakeClient"] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add_user(self, email: str, password: str, role: str | None = "customer", profile: bool = True) -> str:
        user_id = f"user-{next(self._ids)}"
        self.users[email] = {"id": user_id, "email": email, "password": password}
        if profile:
            self.profiles[user_id] = {
                "id": user_id,
                "email": email,
                "full_name": None,
                "avatar_url": None,
                "phone_number": None,
                "role": role,
                "created_at": "2024-01-01T00:00:00Z",
                "updated_at": "2024-01-01T00:00:00Z",
            }
        return user_id

    def user_by_id(self, user_id: str) -> dict[str, Any] | None:
        for user in self.users.values():
            if user["id"] == user_id:
                return user
        return None

    def issue_session(self, user: dict[str, Any], expires_at: float | None = None) -> SimpleNamespace:
        refresh_token = f"refresh-{user['id']}-{next(self._ids)}"
        self.refresh_tokens[refresh_token] = user["id"]
        return SimpleNamespace(
            access_token=f"access-{user['id']}-{next(self._ids)}",
            refresh_token=refresh_token,
            expires_at=int(expires_at if expires_at is not None else time.time() + self.session_seconds),
            user=SimpleNamespace(id=user["id"], email=user["email"]),
        )

    def check_network(self) -> None:
        if self.network_down:
            raise httpx.ConnectError("connection refused")

    def factory(self, url: str, key: str, options: Any) -> "FakeClient":
        client = FakeClient(self, elevated=key == SERVICE_KEY)
        self.clients.append(client)
        return client


class FakeAdminAuth:
    def __init__(self, backend: FakeBackend, elevated: bool) -> None:
        self._backend = backend
        self._elevated = elevated

    def list_users(self) -> list[SimpleNamespace]:
        if not self._elevated:
            raise FakeAuthError("User not allowed")
        return [SimpleNamespace(id=u["id"], email=u["email"]) for u in self._backend.users.values()]

    def create_user(self, attributes: dict[str, Any]) -> SimpleNamespace:
        if not self._elevated:
            raise FakeAuthError("User not allowed")
        backend = self._backend
        email = attributes["email"]
        if email in backend.users:
            raise FakeAuthError("A user with this email address has already been registered")
        # The signup trigger creates a customer profile.
        user_id = backend.add_user(email, attributes["password"], role="customer")
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=email))

    def update_user_by_id(self, user_id: str, attributes: dict[str, Any]) -> SimpleNamespace:
        if not self._elevated:
            raise FakeAuthError("User not allowed")
        user = self._backend.user_by_id(user_id)
        if user is None:
            raise FakeAuthError("User not found")
        if "password" in attributes:
            user["password"] = attributes["password"]
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=user["email"]))


class FakeAuth:
    def __init__(self, backend: FakeBackend, elevated: bool) -> None:
        self._backend = backend
        self.current: SimpleNamespace | None = None
        self.admin = FakeAdminAuth(backend, elevated)

    def sign_in_with_password(self, credentials: dict[str, str]) -> SimpleNamespace:
        backend = self._backend
        backend.check_network()
        backend.sign_in_calls += 1
        user = backend.users.get(credentials.get("email", ""))
        if user is None or user["password"] != credentials.get("password"):
            raise FakeAuthError("Invalid login credentials")
        self.current = backend.issue_session(user)
        return SimpleNamespace(session=self.current, user=self.current.user)

    def get_session(self) -> SimpleNamespace | None:
        return self.current

    def set_session(self, access_token: str, refresh_token: str) -> SimpleNamespace:
        backend = self._backend
        backend.check_network()
        user_id = backend.refresh_tokens.get(refresh_token)
        if user_id is None:
            raise FakeAuthError("Invalid Refresh Token")
        user = backend.user_by_id(user_id)
        self.current = backend.issue_session(user)
        return SimpleNamespace(session=self.current, user=self.current.user)

    def refresh_session(self, refresh_token: str | None = None) -> SimpleNamespace:
        backend = self._backend
        with backend._lock:
            backend.refresh_calls += 1
        if backend.refresh_gate is not None:
            backend.refresh_gate.wait(timeout=5)
        backend.check_network()
        if backend.refresh_fail:
            raise FakeAuthError("Invalid Refresh Token: Already Used")
        token = refresh_token or (self.current.refresh_token if self.current else None)
        user_id = backend.refresh_tokens.pop(token, None) if token else None
        if user_id is None:
            raise FakeAuthError("Auth session missing!")
        self.current = backend.issue_session(backend.user_by_id(user_id))
        return SimpleNamespace(session=self.current, user=self.current.user)

    def sign_out(self) -> None:
        self._backend.sign_out_calls += 1
        self.current = None


class FakeQuery:
    def __init__(self, backend: FakeBackend, table: str, elevated: bool) -> None:
        self._backend = backend
        self._table = table
        self._elevated = elevated
        self._filters: list[tuple[str, Any]] = []
        self._action = "select"
        self._payload: dict[str, Any] = {}
        self._limit: int | None = None

    def select(self, columns: str = "*") -> "FakeQuery":
        self._action = "select"
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self._action = "update"
        self._payload = dict(payload)
        return self

    def upsert(self, payload: dict[str, Any]) -> "FakeQuery":
        self._action = "upsert"
        self._payload = dict(payload)
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append((column, value))
        return self

    def limit(self, count: int) -> "FakeQuery":
        self._limit = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(row.get(column) == value for column, value in self._filters)

    def execute(self) -> SimpleNamespace:
        backend = self._backend
        backend.check_network()
        if backend.profile_error and not self._elevated:
            raise RuntimeError(backend.profile_error)
        rows = backend.profiles
        if self._action == "select":
            data = [dict(row) for row in rows.values() if self._matches(row)]
            if self._limit is not None:
                data = data[: self._limit]
            return SimpleNamespace(data=data)
        if self._action == "update":
            data = []
            for row in rows.values():
                if self._matches(row):
                    row.update(self._payload)
                    data.append(dict(row))
            return SimpleNamespace(data=data)
        row = rows.setdefault(self._payload["id"], {"id": self._payload["id"]})
        row.update(self._payload)
        return SimpleNamespace(data=[dict(row)])


class FakeRPC:
    def __init__(self, backend: FakeBackend, name: str, params: dict[str, Any]) -> None:
        self._backend = backend
        self._name = name
        self._params = params

    def execute(self) -> SimpleNamespace:
        backend = self._backend
        backend.check_network()
        if self._name != "verify_admin_access":
            raise RuntimeError(f"unknown function {self._name}")
        user_id = self._params.get("user_id")
        profile = backend.profiles.get(user_id)
        user = backend.user_by_id(user_id) or {}
        row = {
            "user_exists": profile is not None,
            "is_admin": bool(profile and profile.get("role") == "admin"),
            "user_role": profile.get("role") if profile else None,
            "auth_user_id": user_id,
            "email": user.get("email"),
            "email_in_profile": profile.get("email") if profile else None,
        }
        if backend.verify_override:
            row.update(backend.verify_override)
        return SimpleNamespace(data=[row])


class FakeClient:
    def __init__(self, backend: FakeBackend, elevated: bool = False) -> None:
        self._backend = backend
        self.elevated = elevated
        self.auth = FakeAuth(backend, elevated)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self._backend, name, self.elevated)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRPC:
        return FakeRPC(self._backend, name, params)
