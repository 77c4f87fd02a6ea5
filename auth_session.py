"""
Admin session lifecycle: sign-in, single-flight refresh, sign-out and the
admin flag derived from the caller's profile.

``AuthContext`` is the only object that mutates session state. The Streamlit
layer builds one per browser session (see ``access_guard.get_auth_context``)
and hands it to the route gate and the diagnostics helpers.

Refreshes may finish on a worker or timer thread. Those threads never touch
the session store: they queue the write, and the script thread applies it
with ``flush_persistence()``.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import httpx

from auth_models import (
    AuthErrorCode,
    AuthResult,
    AuthState,
    ConfigurationMissing,
    Profile,
    ProfileLookupError,
    SessionInfo,
)
from profiles import fetch_profile
from session_config import SessionConfig
from session_store import MemorySessionStore, SessionStore
from settings import ensure_logger
from supabase_client import CredentialStore

AUTH_LOGGER = logging.getLogger("auth_session")

_SAVE = "save"
_CLEAR = "clear"


def classify_auth_error(exc: BaseException) -> AuthErrorCode:
    if isinstance(exc, ConfigurationMissing):
        return AuthErrorCode.CONFIGURATION_MISSING
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return AuthErrorCode.NETWORK_ERROR
    return AuthErrorCode.INVALID_CREDENTIALS


def _background_tick(ref: "weakref.ReferenceType[AuthContext]") -> None:
    auth = ref()
    if auth is not None:
        auth._tick()


def _cancel_timer(slot: list[threading.Timer | None]) -> None:
    timer = slot[0]
    if timer is not None:
        timer.cancel()


class AuthContext:
    def __init__(
        self,
        credentials: CredentialStore,
        config: SessionConfig,
        session_store: SessionStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        ensure_logger(AUTH_LOGGER)
        self.credentials = credentials
        self.config = config
        self._store: SessionStore = session_store or MemorySessionStore()
        self._clock = clock
        self._lock = threading.RLock()
        self._inflight: Future[bool] | None = None
        self._executor: ThreadPoolExecutor | None = None
        # Timer threads hold only a weak reference; dropping the context
        # cancels whichever timer is pending.
        self._timer_slot: list[threading.Timer | None] = [None]
        weakref.finalize(self, _cancel_timer, self._timer_slot)
        self._closed = False
        # Bumped on sign-out and sign-in; refresh results from an older
        # generation are discarded.
        self._generation = 0
        self._pending_persist: tuple[str, SessionInfo | None] | None = None

        self.state = AuthState.INITIALIZING
        self.session: SessionInfo | None = None
        self.profile: Profile | None = None
        self.is_admin: bool | None = None
        self.last_refresh_at: float | None = None
        self.last_error: AuthErrorCode | None = None
        self.refresh_calls = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def loading(self) -> bool:
        return self.state in (AuthState.INITIALIZING, AuthState.REFRESHING)

    @property
    def refresh_in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    @property
    def authenticated(self) -> bool:
        return self.session is not None and self.state is not AuthState.UNAUTHENTICATED

    @property
    def persistence_pending(self) -> bool:
        with self._lock:
            return self._pending_persist is not None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self.state.value,
                "session": self.session.to_public_dict() if self.session else None,
                "is_admin": self.is_admin,
                "last_refresh_at": self.last_refresh_at,
                "last_error": self.last_error.value if self.last_error else None,
                "refresh_in_flight": self._inflight is not None,
            }

    # ------------------------------------------------------------------
    # State transitions (callers hold no lock)
    # ------------------------------------------------------------------

    def _derive_admin(self, client: Any, user_id: str) -> tuple[Profile | None, bool | None]:
        try:
            profile = fetch_profile(client, user_id)
        except ProfileLookupError as exc:
            AUTH_LOGGER.warning("admin status unknown for %s: %s", user_id, exc)
            return None, None
        return profile, profile.is_admin

    def _apply_session(
        self, client: Any, session: SessionInfo, generation: int | None = None
    ) -> bool:
        profile, is_admin = self._derive_admin(client, session.user_id)
        with self._lock:
            if generation is not None and generation != self._generation:
                AUTH_LOGGER.info("discarding refresh result for %s after sign-out", session.user_id)
                return False
            self.session = session
            self.profile = profile
            self.is_admin = is_admin
            self.last_refresh_at = self._clock()
            self.last_error = None
            self.state = AuthState.AUTHENTICATED
            self._pending_persist = (_SAVE, session)
        return True

    def _mark_unauthenticated(
        self,
        error: AuthErrorCode | None,
        *,
        forget: bool = True,
        generation: int | None = None,
    ) -> None:
        with self._lock:
            if generation is not None and generation != self._generation:
                return
            self.session = None
            self.profile = None
            self.is_admin = None
            self.last_error = error
            self.state = AuthState.UNAUTHENTICATED
            if forget:
                self._pending_persist = (_CLEAR, None)

    def flush_persistence(self) -> None:
        """Write queued session changes to the store.

        Call from the Streamlit script thread only: the cookie store renders
        a component.
        """
        with self._lock:
            pending, self._pending_persist = self._pending_persist, None
        if pending is None:
            return
        action, session = pending
        if action == _SAVE and session is not None:
            self._store.save(session)
        elif action == _CLEAR:
            self._store.clear()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> AuthState:
        """Restore a persisted session, or whatever the client already holds."""
        with self._lock:
            self.state = AuthState.INITIALIZING
        stored = self._store.load()
        try:
            client = self.credentials.standard_handle()
            if stored is not None:
                response = client.auth.set_session(stored.access_token, stored.refresh_token)
                session = SessionInfo.from_supabase(getattr(response, "session", None))
            else:
                session = SessionInfo.from_supabase(client.auth.get_session())
        except Exception as exc:
            code = classify_auth_error(exc)
            AUTH_LOGGER.warning("session restore failed (%s): %s", code.value, exc)
            # Keep the cookie on transient failures so a reload can retry.
            self._mark_unauthenticated(code, forget=code is not AuthErrorCode.NETWORK_ERROR)
            self.flush_persistence()
            return self.state
        if session is None:
            self._mark_unauthenticated(None, forget=stored is not None)
            self.flush_persistence()
            AUTH_LOGGER.debug("no active session")
            return self.state
        self._apply_session(client, session)
        self.flush_persistence()
        AUTH_LOGGER.info(
            "session restored user=%s admin=%s", session.user_id, self.is_admin
        )
        return self.state

    def sign_in(self, email: str, password: str) -> AuthResult:
        """Password sign-in.

        Any earlier session is signed out first. Must not be called while a
        refresh is in flight; that ordering is not enforced here. The store
        sees a single write per call.
        """
        email = (email or "").strip().lower()
        if not email or not password:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.INVALID_INPUT,
                error_message="Email and password are required.",
            )
        self._end_session()
        with self._lock:
            self.state = AuthState.INITIALIZING
        try:
            client = self.credentials.standard_handle()
            response = client.auth.sign_in_with_password({"email": email, "password": password})
            session = SessionInfo.from_supabase(getattr(response, "session", None))
        except Exception as exc:
            code = classify_auth_error(exc)
            AUTH_LOGGER.warning("sign-in failed for %s (%s): %s", email, code.value, exc)
            self._mark_unauthenticated(code)
            self.flush_persistence()
            return AuthResult(success=False, error_code=code, error_message=str(exc))
        if session is None:
            self._mark_unauthenticated(AuthErrorCode.INVALID_CREDENTIALS)
            self.flush_persistence()
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.INVALID_CREDENTIALS,
                error_message="Sign-in did not return a session.",
            )
        self._apply_session(client, session)
        self.flush_persistence()
        hours_left = session.seconds_left(self._clock())
        AUTH_LOGGER.info(
            "signed in user=%s admin=%s expires_in_hours=%s",
            session.user_id,
            self.is_admin,
            round(hours_left / 3600) if hours_left is not None else "n/a",
        )
        return AuthResult(
            success=True,
            user_id=session.user_id,
            email=session.email or email,
            is_admin=self.is_admin,
        )

    def _end_session(self) -> None:
        with self._lock:
            self._generation += 1
        try:
            if self.session is not None:
                self.credentials.standard_handle().auth.sign_out()
        except Exception as exc:
            AUTH_LOGGER.warning("server-side sign out failed: %s", exc)
        self._mark_unauthenticated(None)
        self.credentials.reset()

    def sign_out(self) -> None:
        self._end_session()
        self.flush_persistence()

    def recheck_admin(self) -> bool | None:
        """Re-read the profile without touching the tokens."""
        session = self.session
        if session is None:
            return None
        profile, is_admin = self._derive_admin(self.credentials.standard_handle(), session.user_id)
        with self._lock:
            if self.session is session:
                self.profile = profile
                self.is_admin = is_admin
        return is_admin

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def _claim_refresh(self) -> tuple[Future[bool], bool]:
        with self._lock:
            if self._inflight is not None:
                return self._inflight, False
            future: Future[bool] = Future()
            self._inflight = future
            self.state = AuthState.REFRESHING
            return future, True

    def _perform_refresh(self) -> bool:
        with self._lock:
            session = self.session
            generation = self._generation
        if session is None:
            AUTH_LOGGER.debug("refresh requested without a session")
            self._mark_unauthenticated(AuthErrorCode.SESSION_EXPIRED, forget=False)
            return False
        self.refresh_calls += 1
        try:
            client = self.credentials.standard_handle()
            response = client.auth.refresh_session(session.refresh_token)
            new_session = SessionInfo.from_supabase(getattr(response, "session", None))
        except Exception as exc:
            code = classify_auth_error(exc)
            AUTH_LOGGER.warning("session refresh failed (%s): %s", code.value, exc)
            if code is AuthErrorCode.INVALID_CREDENTIALS:
                code = AuthErrorCode.SESSION_EXPIRED
            self._mark_unauthenticated(
                code, forget=code is not AuthErrorCode.NETWORK_ERROR, generation=generation
            )
            return False
        if new_session is None:
            self._mark_unauthenticated(AuthErrorCode.SESSION_EXPIRED, generation=generation)
            return False
        if not self._apply_session(client, new_session, generation):
            return False
        AUTH_LOGGER.debug("session refreshed user=%s", new_session.user_id)
        return True

    def _run_refresh(self, future: Future[bool]) -> None:
        ok = False
        try:
            ok = self._perform_refresh()
        except Exception:
            AUTH_LOGGER.exception("unexpected error during session refresh")
            self._mark_unauthenticated(AuthErrorCode.SESSION_EXPIRED, forget=False)
        finally:
            with self._lock:
                self._inflight = None
                if self.state is AuthState.REFRESHING:
                    self.state = (
                        AuthState.AUTHENTICATED if self.session else AuthState.UNAUTHENTICATED
                    )
            future.set_result(ok)

    def refresh_session(self) -> bool:
        """Refresh the tokens and the admin flag; never raises.

        Single-flight: while one refresh is running, further callers wait for
        and return its result instead of issuing another request. The new
        session is queued for the store, see ``flush_persistence``.
        """
        future, leader = self._claim_refresh()
        if leader:
            self._run_refresh(future)
        return future.result()

    def refresh_in_background(self) -> Future[bool]:
        """Non-blocking refresh sharing the single-flight slot."""
        future, leader = self._claim_refresh()
        if not leader:
            return future
        try:
            self._get_executor().submit(self._run_refresh, future)
        except RuntimeError:
            # Executor already shut down.
            self._run_refresh(future)
        return future

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._closed:
                raise RuntimeError("auth context closed")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="auth-refresh")
            return self._executor

    def refresh_due(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        with self._lock:
            if self.state is not AuthState.AUTHENTICATED or self.session is None:
                return False
            elapsed = now - (self.last_refresh_at or 0.0)
            if elapsed < self.config.min_refresh_interval_seconds:
                return False
            return (
                elapsed >= self.config.session_refresh_interval_seconds
                or self.session.is_expired(now)
            )

    def maybe_refresh(self, now: float | None = None) -> bool:
        """Background tick: refresh when due. Returns True only if refreshed."""
        if not self.refresh_due(now):
            return False
        return self.refresh_session()

    def start_background_refresh(self) -> None:
        with self._lock:
            if self._closed or self._timer_slot[0] is not None:
                return
            self._schedule_tick()

    def _schedule_tick(self) -> None:
        timer = threading.Timer(
            self.config.min_refresh_interval_seconds,
            _background_tick,
            args=(weakref.ref(self),),
        )
        timer.daemon = True
        self._timer_slot[0] = timer
        timer.start()

    def _tick(self) -> None:
        try:
            self.maybe_refresh()
        except Exception:
            AUTH_LOGGER.exception("background refresh tick failed")
        with self._lock:
            if not self._closed:
                self._schedule_tick()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            timer, self._timer_slot[0] = self._timer_slot[0], None
            executor, self._executor = self._executor, None
        if timer is not None:
            timer.cancel()
        if executor is not None:
            executor.shutdown(wait=False)
