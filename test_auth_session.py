from __future__ import annotations

import gc
import threading
import time
import weakref
from dataclasses import replace

import httpx

from auth_models import AuthErrorCode, AuthState
from auth_session import AuthContext, classify_auth_error
from session_config import session_config
from session_store import MemorySessionStore
from supabase_client import CredentialStore
from supabase_fakes import FakeBackend, make_settings


def _context(backend: FakeBackend, store=None, clock=time.time, **overrides) -> AuthContext:
    credentials = CredentialStore(make_settings(**overrides), client_factory=backend.factory)
    return AuthContext(credentials, session_config(1), store, clock=clock)


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.time() + timeout
    while not predicate():
        if time.time() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


def test_sign_in_admin_sets_session_and_flag() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)

    result = auth.sign_in("  Boss@Example.com ", "pw")

    assert result.success
    assert result.is_admin is True
    assert auth.state is AuthState.AUTHENTICATED
    assert auth.is_admin is True
    assert store.session is not None
    assert store.session.user_id == result.user_id


def test_sign_in_customer_is_not_admin() -> None:
    backend = FakeBackend()
    backend.add_user("shopper@example.com", "pw", role="customer")
    auth = _context(backend)

    result = auth.sign_in("shopper@example.com", "pw")

    assert result.success
    assert result.is_admin is False
    assert auth.is_admin is False


def test_sign_in_wrong_password() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    auth = _context(backend)

    result = auth.sign_in("boss@example.com", "nope")

    assert not result.success
    assert result.error_code is AuthErrorCode.INVALID_CREDENTIALS
    assert auth.state is AuthState.UNAUTHENTICATED
    assert auth.session is None


def test_sign_in_requires_both_fields() -> None:
    backend = FakeBackend()
    auth = _context(backend)

    result = auth.sign_in("", "pw")

    assert result.error_code is AuthErrorCode.INVALID_INPUT
    assert backend.sign_in_calls == 0


def test_sign_in_network_failure() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    backend.network_down = True
    auth = _context(backend)

    result = auth.sign_in("boss@example.com", "pw")

    assert result.error_code is AuthErrorCode.NETWORK_ERROR


def test_sign_in_without_configuration() -> None:
    backend = FakeBackend()
    auth = _context(backend, supabase_url="")

    result = auth.sign_in("boss@example.com", "pw")

    assert result.error_code is AuthErrorCode.CONFIGURATION_MISSING
    assert backend.clients == []


def test_missing_profile_leaves_admin_unknown() -> None:
    backend = FakeBackend()
    backend.add_user("new@example.com", "pw", profile=False)
    auth = _context(backend)

    result = auth.sign_in("new@example.com", "pw")

    assert result.success
    assert auth.is_admin is None


def test_profile_query_error_leaves_admin_unknown() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    backend.profile_error = "infinite recursion detected in policy for relation profiles"
    auth = _context(backend)

    auth.sign_in("boss@example.com", "pw")

    assert auth.session is not None
    assert auth.is_admin is None


def test_second_sign_in_signs_out_first() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    backend.add_user("shopper@example.com", "pw")
    auth = _context(backend)

    auth.sign_in("boss@example.com", "pw")
    auth.sign_in("shopper@example.com", "pw")

    assert backend.sign_out_calls == 1
    assert auth.session.email == "shopper@example.com"
    assert auth.is_admin is False


def test_refresh_without_session_fails_without_request() -> None:
    backend = FakeBackend()
    auth = _context(backend)

    assert auth.refresh_session() is False
    assert auth.state is AuthState.UNAUTHENTICATED
    assert backend.refresh_calls == 0


def test_refresh_rotates_tokens() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)
    auth.sign_in("boss@example.com", "pw")
    before = auth.session.refresh_token

    assert auth.refresh_session() is True
    assert auth.session.refresh_token != before
    assert store.session.refresh_token == before
    assert auth.persistence_pending

    auth.flush_persistence()
    assert store.session.refresh_token == auth.session.refresh_token
    assert not auth.persistence_pending
    assert auth.state is AuthState.AUTHENTICATED
    assert auth.is_admin is True


def test_concurrent_refreshes_share_one_request() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    auth = _context(backend)
    auth.sign_in("boss@example.com", "pw")
    backend.refresh_gate = threading.Event()
    results: list[bool] = []

    def _refresh() -> None:
        results.append(auth.refresh_session())

    first = threading.Thread(target=_refresh)
    first.start()
    _wait_for(lambda: backend.refresh_calls == 1)
    assert auth.state is AuthState.REFRESHING
    assert auth.refresh_in_flight

    background = auth.refresh_in_background()
    assert auth.refresh_in_background() is background
    backend.refresh_gate.set()
    first.join(5)

    assert background.result(timeout=5) is True
    assert results == [True]
    assert backend.refresh_calls == 1
    assert not auth.refresh_in_flight
    auth.close()


def test_rejected_refresh_clears_session_and_store() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)
    auth.sign_in("boss@example.com", "pw")
    backend.refresh_fail = True

    assert auth.refresh_session() is False
    assert auth.session is None
    assert auth.last_error is AuthErrorCode.SESSION_EXPIRED
    auth.flush_persistence()
    assert store.session is None


def test_network_failure_during_refresh_keeps_stored_session() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)
    auth.sign_in("boss@example.com", "pw")
    backend.network_down = True

    assert auth.refresh_session() is False
    assert auth.last_error is AuthErrorCode.NETWORK_ERROR
    assert auth.session is None
    auth.flush_persistence()
    assert store.session is not None


def test_sign_out_clears_everything() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)
    auth.sign_in("boss@example.com", "pw")

    auth.sign_out()

    assert backend.sign_out_calls == 1
    assert auth.session is None
    assert auth.is_admin is None
    assert auth.state is AuthState.UNAUTHENTICATED
    assert store.session is None


def test_initialize_restores_persisted_session() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    first = _context(backend, store)
    first.sign_in("boss@example.com", "pw")

    second = _context(backend, store)
    assert second.state is AuthState.INITIALIZING
    assert second.loading

    assert second.initialize() is AuthState.AUTHENTICATED
    assert second.is_admin is True
    assert second.session.user_id == first.session.user_id


def test_initialize_without_session() -> None:
    backend = FakeBackend()
    auth = _context(backend)

    assert auth.initialize() is AuthState.UNAUTHENTICATED
    assert not auth.loading


def test_initialize_with_stale_cookie_forgets_it() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)
    auth.sign_in("boss@example.com", "pw")
    store.session = replace(store.session, refresh_token="revoked")

    fresh = _context(backend, store)
    assert fresh.initialize() is AuthState.UNAUTHENTICATED
    assert store.session is None


def test_maybe_refresh_respects_intervals() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    now = [1_000.0]
    auth = _context(backend, clock=lambda: now[0])
    auth.sign_in("boss@example.com", "pw")
    config = auth.config

    now[0] += 60
    assert auth.maybe_refresh() is False
    now[0] += config.min_refresh_interval_seconds
    assert auth.maybe_refresh() is False
    now[0] += config.session_refresh_interval_seconds
    assert auth.maybe_refresh() is True
    assert backend.refresh_calls == 1
    assert auth.last_refresh_at == now[0]


def test_maybe_refresh_when_session_expired() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    now = [time.time()]
    auth = _context(backend, clock=lambda: now[0])
    auth.sign_in("boss@example.com", "pw")
    auth.session = replace(auth.session, expires_at=now[0] + 60)

    now[0] += auth.config.min_refresh_interval_seconds
    assert auth.refresh_due()
    assert auth.maybe_refresh() is True


def test_background_refresh_after_close_runs_inline() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    auth = _context(backend)
    auth.sign_in("boss@example.com", "pw")
    auth.start_background_refresh()
    auth.close()

    future = auth.refresh_in_background()

    assert future.done()
    assert future.result() is True


def test_classify_auth_error() -> None:
    request = httpx.Request("POST", "https://example.supabase.co/auth/v1/token")
    assert classify_auth_error(httpx.ReadTimeout("slow", request=request)) is AuthErrorCode.NETWORK_ERROR
    assert classify_auth_error(ConnectionResetError()) is AuthErrorCode.NETWORK_ERROR
    assert classify_auth_error(ValueError("Invalid login credentials")) is AuthErrorCode.INVALID_CREDENTIALS


def test_sign_out_during_refresh_stays_signed_out() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    store = MemorySessionStore()
    auth = _context(backend, store)
    auth.sign_in("boss@example.com", "pw")
    backend.refresh_gate = threading.Event()

    future = auth.refresh_in_background()
    _wait_for(lambda: backend.refresh_calls == 1)
    auth.sign_out()
    backend.refresh_gate.set()

    assert future.result(timeout=5) is False
    auth.flush_persistence()
    assert auth.session is None
    assert auth.is_admin is None
    assert auth.state is AuthState.UNAUTHENTICATED
    assert store.session is None
    auth.close()


def test_abandoned_context_is_collected_and_timer_cancelled() -> None:
    backend = FakeBackend()
    backend.add_user("boss@example.com", "pw", role="admin")
    auth = _context(backend)
    auth.sign_in("boss@example.com", "pw")
    auth.start_background_refresh()
    timer = auth._timer_slot[0]
    ref = weakref.ref(auth)

    del auth
    gc.collect()

    assert ref() is None
    assert timer.finished.is_set()
    timer.join(5)
    assert not timer.is_alive()
