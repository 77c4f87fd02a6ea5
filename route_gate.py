"""
Decision logic for protected pages, independent of Streamlit.

``RouteGate.evaluate`` is called on every script run for the current page.
It may start a background refresh, tracks a watchdog for it, and returns a
``GateDecision`` naming the view to render.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from auth_session import AuthContext
from settings import ensure_logger

GATE_LOGGER = logging.getLogger("route_gate")
DEFAULT_WATCHDOG_SECONDS = 8.0


class GateView(str, Enum):
    GRANTED = "granted"
    LOADING = "loading"
    TIMED_OUT = "timed_out"
    ACCESS_DENIED = "access_denied"
    RETRY_REQUIRED = "retry_required"
    REDIRECT_LOGIN = "redirect_login"


@dataclass(frozen=True)
class GateDecision:
    view: GateView
    path: str
    session_label: str = ""
    redirect_now: bool = False
    forced: bool = False

    @property
    def granted(self) -> bool:
        return self.view is GateView.GRANTED


class RouteRefreshLedger:
    """Path -> time of the last successful refresh made for that path."""

    def __init__(self) -> None:
        self._last: dict[str, float] = {}

    def record(self, path: str, when: float) -> None:
        self._last[path] = when

    def last(self, path: str) -> float | None:
        return self._last.get(path)

    def refreshed_within(self, path: str, window_seconds: float, now: float) -> bool:
        last = self._last.get(path)
        return last is not None and now - last < window_seconds


class RouteGate:
    def __init__(
        self,
        auth: AuthContext,
        *,
        watchdog_seconds: float = DEFAULT_WATCHDOG_SECONDS,
        bypass_check: Callable[[], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
        ledger_clock: Callable[[], float] = time.time,
    ) -> None:
        ensure_logger(GATE_LOGGER)
        self.auth = auth
        self.watchdog_seconds = watchdog_seconds
        self.ledger = RouteRefreshLedger()
        self._bypass_check = bypass_check or (lambda: False)
        self._clock = clock
        self._ledger_clock = ledger_clock
        self._path: str | None = None
        self._reset_mount()

    def _reset_mount(self) -> None:
        self.refresh_attempted = False
        self.refresh_failed = False
        self.watchdog_expired = False
        self.redirect_issued = False
        self._pending: Future[bool] | None = None
        self._pending_path: str | None = None
        self._pending_started: float = 0.0

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def _collect(self) -> None:
        pending = self._pending
        if pending is None or not pending.done():
            return
        self._pending = None
        ok = bool(pending.result())
        if ok:
            self.refresh_failed = False
            if self._pending_path is not None:
                self.ledger.record(self._pending_path, self._ledger_clock())
        else:
            self.refresh_failed = True
        GATE_LOGGER.debug(
            "refresh finished path=%s ok=%s late=%s", self._pending_path, ok, self.watchdog_expired
        )

    def _should_refresh(self, path: str) -> bool:
        auth = self.auth
        if auth.loading or self._pending is not None or self.refresh_attempted:
            return False
        now = self._ledger_clock()
        session = auth.session
        if session is not None and not session.is_expired(now) and auth.is_admin is not None:
            return False
        window = auth.config.route_refresh_interval_seconds
        return not self.ledger.refreshed_within(path, window, now)

    def _start_refresh(self, path: str) -> None:
        GATE_LOGGER.info("protected route %s: attempting session refresh", path)
        self.refresh_attempted = True
        self.watchdog_expired = False
        self._pending_path = path
        self._pending_started = self._clock()
        self._pending = self.auth.refresh_in_background()

    def retry(self) -> None:
        """Manual retry from the timed-out, denied or retry views."""
        self.refresh_failed = False
        self.watchdog_expired = False
        self.redirect_issued = False
        if self._pending is not None:
            self._pending_started = self._clock()
        elif self._path is not None:
            self._start_refresh(self._path)

    def evaluate(self, path: str) -> GateDecision:
        if path != self._path:
            self._path = path
            self._reset_mount()
        self._collect()
        if self._pending is None and self.auth.refresh_in_flight:
            # Watch a refresh started elsewhere (background timer) as well.
            self._pending_path = path
            self._pending_started = self._clock()
            self._pending = self.auth.refresh_in_background()
        if self._should_refresh(path):
            self._start_refresh(path)
            self._collect()

        if (
            self._pending is not None
            and not self.watchdog_expired
            and self._clock() - self._pending_started >= self.watchdog_seconds
        ):
            self.watchdog_expired = True
            GATE_LOGGER.warning(
                "protected route %s: refresh still pending after %.0fs", path, self.watchdog_seconds
            )

        # evaluate runs on the script thread, where the cookie store may write.
        self.auth.flush_persistence()
        return self._decide(path)

    def _decide(self, path: str) -> GateDecision:
        auth = self.auth
        label = auth.config.session_duration_human
        session = auth.session
        is_admin = auth.is_admin
        # The testing bypass never overrides a confirmed "not admin".
        forced = session is not None and is_admin is not False and self._bypass_check()
        loading = (auth.loading or self._pending is not None) and not self.watchdog_expired

        # A refresh still pending past the watchdog never falls through to the
        # stale session it is replacing.
        if self.watchdog_expired and self._pending is not None:
            return GateDecision(GateView.TIMED_OUT, path, label)
        if session is not None and (is_admin is True or forced) and not loading:
            return GateDecision(GateView.GRANTED, path, label, forced=forced and is_admin is not True)
        if loading:
            return GateDecision(GateView.LOADING, path, label)
        if session is not None and is_admin is False:
            return GateDecision(GateView.ACCESS_DENIED, path, label)
        if session is not None:
            return GateDecision(GateView.RETRY_REQUIRED, path, label)

        redirect_now = not self.redirect_issued
        if redirect_now:
            self.redirect_issued = True
            GATE_LOGGER.info(
                "protected route %s: no session (refresh_failed=%s), redirecting to login",
                path,
                self.refresh_failed,
            )
        return GateDecision(GateView.REDIRECT_LOGIN, path, label, redirect_now=redirect_now)
