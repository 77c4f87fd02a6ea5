#!/usr/bin/env python3
"""
Checks for the pieces behind the protected-page guard.

This tests that:
- the testing bypass only applies with developer tools on, outside production,
  and never overrides a confirmed non-admin
- the signed session cookie round-trips and rejects tampered values
- runtime settings are read from the environment and validated
- each sign-in writes the session cookie exactly once

Notes:
- No Streamlit UI is exercised here.
- Supabase is replaced by the in-memory fakes in supabase_fakes.py.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(REPO_ROOT))

from auth_models import SessionInfo  # noqa: E402
from auth_session import AuthContext  # noqa: E402
from diagnostics import force_admin_access_for_testing, is_admin_access_forced  # noqa: E402
from route_gate import GateView, RouteGate  # noqa: E402
from runtime_checks import check_auth_settings  # noqa: E402
from session_config import session_config  # noqa: E402
from session_store import CookieSessionStore  # noqa: E402
from settings import AuthSettings, ensure_logger, load_auth_settings  # noqa: E402
from supabase_client import CredentialStore  # noqa: E402
from supabase_fakes import FakeBackend, make_settings  # noqa: E402


class _FakeCookies(dict):
    def __init__(self, ready: bool = True) -> None:
        super().__init__()
        self._ready = ready
        self.saves = 0

    def ready(self) -> bool:
        return self._ready

    def save(self) -> None:
        self.saves += 1


def _gate_for(role: str | None, settings: AuthSettings, storage: dict) -> RouteGate:
    backend = FakeBackend()
    backend.add_user("user@example.com", "pw", role=role, profile=role is not None)
    auth = AuthContext(CredentialStore(settings, client_factory=backend.factory), session_config(1))
    assert auth.sign_in("user@example.com", "pw").success
    gate = RouteGate(auth, bypass_check=lambda: is_admin_access_forced(storage, settings))
    force_admin_access_for_testing(storage, settings)
    return gate


def _settled(gate: RouteGate, path: str):
    decision = gate.evaluate(path)
    if gate.pending:
        gate._pending.result(timeout=5)
        decision = gate.evaluate(path)
    return decision


def test_forced_access_grants_unknown_role_with_dev_tools() -> None:
    gate = _gate_for(None, make_settings(dev_tools=True), {})
    decision = _settled(gate, "/products")
    assert decision.view is GateView.GRANTED
    assert decision.forced


def test_forced_access_ignored_without_dev_tools() -> None:
    gate = _gate_for(None, make_settings(), {})
    assert _settled(gate, "/products").view is GateView.RETRY_REQUIRED


def test_forced_access_ignored_in_production() -> None:
    gate = _gate_for(None, make_settings(dev_tools=True, app_env="production"), {})
    assert _settled(gate, "/products").view is GateView.RETRY_REQUIRED


def test_forced_access_never_overrides_customer() -> None:
    gate = _gate_for("customer", make_settings(dev_tools=True), {})
    assert _settled(gate, "/products").view is GateView.ACCESS_DENIED


def test_real_admin_is_not_marked_forced() -> None:
    gate = _gate_for("admin", make_settings(dev_tools=True), {})
    decision = _settled(gate, "/products")
    assert decision.granted
    assert not decision.forced


def test_cookie_store_round_trip() -> None:
    cookies = _FakeCookies()
    store = CookieSessionStore(cookies, "secret", "auth", 86400)
    session = SessionInfo("access", "refresh", 1_900_000_000.0, "user-1", "a@example.com")

    store.save(session)
    assert "auth" in cookies
    assert store.load() == session

    store.clear()
    assert "auth" not in cookies
    assert store.load() is None


def test_cookie_store_drops_tampered_cookie() -> None:
    cookies = _FakeCookies()
    CookieSessionStore(cookies, "other-secret", "auth", 86400).save(
        SessionInfo("access", "refresh", None, "user-1")
    )

    store = CookieSessionStore(cookies, "secret", "auth", 86400)

    assert store.load() is None
    assert "auth" not in cookies


def test_cookie_store_waits_for_browser() -> None:
    cookies = _FakeCookies(ready=False)
    store = CookieSessionStore(cookies, "secret", "auth", 86400)

    store.save(SessionInfo("access", "refresh", None, "user-1"))

    assert cookies == {}
    assert cookies.saves == 0
    assert store.load() is None


def test_sign_in_writes_cookie_once() -> None:
    backend = FakeBackend()
    backend.add_user("user@example.com", "pw", role="admin")
    cookies = _FakeCookies()
    store = CookieSessionStore(cookies, "secret", "auth", 86400)
    auth = AuthContext(
        CredentialStore(make_settings(), client_factory=backend.factory), session_config(1), store
    )

    assert auth.sign_in("user@example.com", "pw").success
    assert cookies.saves == 1

    assert auth.sign_in("user@example.com", "pw").success
    assert cookies.saves == 2
    assert store.load() == auth.session

    auth.sign_out()
    assert cookies.saves == 3
    assert "auth" not in cookies


def test_ensure_logger_defers_to_configured_root(monkeypatch) -> None:
    root = logging.getLogger()
    logger = logging.getLogger("access_guard_test_deferred")
    logger.handlers.clear()

    monkeypatch.setattr(root, "handlers", [logging.NullHandler()])
    ensure_logger(logger)
    assert logger.handlers == []

    monkeypatch.setattr(root, "handlers", [])
    ensure_logger(logger)
    assert len(logger.handlers) == 1
    logger.handlers.clear()


def test_check_auth_settings() -> None:
    report = check_auth_settings(AuthSettings())
    assert report["missing"] == ["SUPABASE_URL", "SUPABASE_ANON_KEY"]
    assert report["elevated"] is False
    assert report["persistent_sessions"] is False

    report = check_auth_settings(make_settings(cookie_secret="s", dev_tools=True, app_env="prod"))
    assert report["missing"] == []
    assert report["elevated"] is True
    assert report["persistent_sessions"] is True
    assert report["dev_tools"] is False


def test_load_auth_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", " https://example.supabase.co ")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.setenv("SESSION_DURATION_DAYS", "11")
    monkeypatch.setenv("GATE_WATCHDOG_SECONDS", "not-a-number")
    monkeypatch.setenv("ADMIN_DEV_TOOLS", "yes")
    monkeypatch.setenv("APP_ENV", "production")

    settings = load_auth_settings()

    assert settings.supabase_url == "https://example.supabase.co"
    assert settings.supabase_service_key == ""
    assert settings.session_days == 11
    assert settings.gate_watchdog_seconds == 8.0
    assert settings.dev_tools is True
    assert settings.dev_tools_enabled is False


if __name__ == "__main__":
    test_forced_access_grants_unknown_role_with_dev_tools()
    test_forced_access_ignored_without_dev_tools()
    test_forced_access_ignored_in_production()
    test_forced_access_never_overrides_customer()
    test_real_admin_is_not_marked_forced()
    test_cookie_store_round_trip()
    test_cookie_store_drops_tampered_cookie()
    test_cookie_store_waits_for_browser()
    test_sign_in_writes_cookie_once()
    test_check_auth_settings()
    print("access guard checks passed")
