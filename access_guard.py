"""
Streamlit glue for the admin session: one auth context per browser session,
the login form, the account sidebar and the protected-page gate.
"""

from __future__ import annotations

import html
import logging
import time
from typing import Any

import streamlit as st
from streamlit_cookies_manager import CookieManager

from auth_models import AuthErrorCode
from auth_session import AuthContext
from diagnostics import (
    clear_forced_admin_access,
    force_admin_access_for_testing,
    is_admin_access_forced,
)
from route_gate import GateDecision, GateView, RouteGate
from runtime_checks import validate_runtime_config
from session_config import session_config
from session_store import CookieSessionStore, MemorySessionStore, SessionStore
from settings import AuthSettings, ensure_logger, load_auth_settings
from supabase_client import CredentialStore

AUTH_CONTEXT_KEY = "_admin_auth_context"
ROUTE_GATE_KEY = "_admin_route_gate"
COOKIE_MANAGER_KEY = "_admin_cookie_manager"
NEXT_PAGE_KEY = "_login_next"
LOGIN_PAGE = "app.py"
HOME_PAGE = "pages/1_Dashboard.py"
LOADING_POLL_SECONDS = 0.5

GUARD_LOGGER = logging.getLogger("access_guard")

_SIGN_IN_MESSAGES = {
    AuthErrorCode.INVALID_INPUT: "Enter your email and password.",
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid email or password.",
    AuthErrorCode.NETWORK_ERROR: "Could not reach the authentication service. Try again.",
    AuthErrorCode.CONFIGURATION_MISSING: "Authentication is not configured for this deployment.",
}


def _get_cookie_manager() -> CookieManager:
    cached = st.session_state.get(COOKIE_MANAGER_KEY)
    if isinstance(cached, CookieManager):
        return cached
    cookies = CookieManager()
    st.session_state[COOKIE_MANAGER_KEY] = cookies
    return cookies


def _session_store(settings: AuthSettings) -> SessionStore:
    if not settings.cookie_secret:
        return MemorySessionStore()
    cookies = _get_cookie_manager()
    if not cookies.ready():
        # The cookie component reruns the script once the browser answers.
        st.stop()
    config = session_config(settings.session_days)
    return CookieSessionStore(
        cookies,
        settings.cookie_secret,
        settings.cookie_name,
        config.session_duration_seconds,
    )


def get_auth_context() -> AuthContext:
    auth = st.session_state.get(AUTH_CONTEXT_KEY)
    if isinstance(auth, AuthContext):
        # Background refreshes queue their cookie writes for this thread.
        auth.flush_persistence()
        return auth
    ensure_logger(GUARD_LOGGER)
    validate_runtime_config()
    settings = load_auth_settings()
    auth = AuthContext(
        CredentialStore(settings),
        session_config(settings.session_days),
        _session_store(settings),
    )
    auth.initialize()
    auth.start_background_refresh()
    st.session_state[AUTH_CONTEXT_KEY] = auth
    return auth


def reset_auth_context() -> None:
    auth = st.session_state.pop(AUTH_CONTEXT_KEY, None)
    st.session_state.pop(ROUTE_GATE_KEY, None)
    if isinstance(auth, AuthContext):
        auth.close()


def get_route_gate(auth: AuthContext) -> RouteGate:
    gate = st.session_state.get(ROUTE_GATE_KEY)
    if isinstance(gate, RouteGate) and gate.auth is auth:
        return gate
    settings = load_auth_settings()
    gate = RouteGate(
        auth,
        watchdog_seconds=settings.gate_watchdog_seconds,
        bypass_check=lambda: is_admin_access_forced(st.session_state, settings),
    )
    st.session_state[ROUTE_GATE_KEY] = gate
    return gate


def _go_to_login(path: str) -> None:
    st.session_state[NEXT_PAGE_KEY] = path
    st.switch_page(LOGIN_PAGE)


def logout() -> None:
    auth = st.session_state.get(AUTH_CONTEXT_KEY)
    if isinstance(auth, AuthContext):
        auth.sign_out()
    clear_forced_admin_access(st.session_state)
    reset_auth_context()
    st.session_state.pop(NEXT_PAGE_KEY, None)
    st.switch_page(LOGIN_PAGE)


def _render_notice(title: str, body: str) -> None:
    st.markdown(f"### {html.escape(title)}")
    st.write(body)


def _render_decision(gate: RouteGate, decision: GateDecision) -> None:
    path = decision.path
    if decision.view is GateView.LOADING:
        with st.spinner("Verifying admin privileges..."):
            st.caption(f"Sessions are valid for {decision.session_label}")
            time.sleep(LOADING_POLL_SECONDS)
        st.rerun()

    if decision.view is GateView.TIMED_OUT:
        _render_notice(
            "Still verifying your session",
            "The authentication service has not answered yet. "
            f"Sessions are valid for {decision.session_label}.",
        )
        cols = st.columns(2)
        if cols[0].button("Stuck? Click to retry", key="gate_retry_timeout"):
            gate.retry()
            st.rerun()
        if cols[1].button("Return to Login", key="gate_login_timeout"):
            _go_to_login(path)
        return

    if decision.view is GateView.ACCESS_DENIED:
        _render_notice(
            "Admin Access Required",
            "You are signed in but do not have admin privileges to access this area.",
        )
        cols = st.columns(2)
        if cols[0].button("Re-check Access", key="gate_retry_denied"):
            gate.retry()
            st.rerun()
        if cols[1].button("Return to Login", key="gate_logout_denied"):
            logout()
        return

    if decision.view is GateView.RETRY_REQUIRED:
        _render_notice(
            "Could not verify admin privileges",
            "Your profile could not be loaded. This is usually temporary.",
        )
        cols = st.columns(2)
        if cols[0].button("Retry", key="gate_retry_unknown"):
            gate.retry()
            st.rerun()
        if cols[1].button("Return to Login", key="gate_logout_unknown"):
            logout()
        settings = load_auth_settings()
        if settings.dev_tools_enabled and st.button(
            "Force admin access in this tab", key="gate_force_unknown"
        ):
            force_admin_access_for_testing(st.session_state, settings)
            st.rerun()
        return

    if decision.redirect_now:
        _go_to_login(path)
    _render_notice("Session Expired", "Your session has expired or could not be verified.")
    if st.button("Return to Login", key="gate_login_expired"):
        _go_to_login(path)


def require_admin(path: str) -> AuthContext:
    """Gate a page: returns the auth context when access is granted,
    otherwise renders the appropriate view and stops the script."""
    auth = get_auth_context()
    gate = get_route_gate(auth)
    try:
        decision = gate.evaluate(path)
    except Exception:
        GUARD_LOGGER.exception("route gate failed for %s", path)
        decision = GateDecision(GateView.REDIRECT_LOGIN, path, redirect_now=True)
    if decision.granted:
        if decision.forced:
            st.warning("Admin access is forced for testing in this tab.")
        return auth
    _render_decision(gate, decision)
    st.stop()


def render_login_form(auth: AuthContext) -> None:
    next_page = st.session_state.get(NEXT_PAGE_KEY) or HOME_PAGE
    with st.form("login_form", clear_on_submit=False):
        email = st.text_input("Email", key="login_email")
        password = st.text_input("Password", type="password", key="login_password")
        submitted = st.form_submit_button("Sign in")
    if not submitted:
        return
    with st.spinner("Signing in..."):
        result = auth.sign_in(email, password)
    if not result.success:
        code = result.error_code or AuthErrorCode.INVALID_CREDENTIALS
        st.error(_SIGN_IN_MESSAGES.get(code, "Sign-in failed."))
        return
    st.session_state.pop(ROUTE_GATE_KEY, None)
    st.session_state.pop(NEXT_PAGE_KEY, None)
    if result.is_admin is False:
        st.warning("Signed in, but this account does not have admin privileges.")
    st.switch_page(next_page)


def render_auth_sidebar(auth: AuthContext) -> None:
    session = auth.session
    if session is None:
        return
    with st.sidebar:
        email = session.email or session.user_id
        if auth.is_admin is True:
            role = "Admin"
        elif auth.is_admin is False:
            role = "No admin access"
        else:
            role = "Role unknown"
        left = session.seconds_left()
        expiry = f"{max(0, round(left / 3600))} h left" if left is not None else ""
        st.markdown(
            f"""
            <div class="auth-title">Account</div>
            <div class="auth-name">{html.escape(email)}</div>
            <div class="auth-email">{html.escape(role)} {html.escape(expiry)}</div>
            """,
            unsafe_allow_html=True,
        )
        if st.button("Sign out", key="auth_logout_btn"):
            logout()


def auth_debug_snapshot(auth: AuthContext) -> dict[str, Any]:
    gate = st.session_state.get(ROUTE_GATE_KEY)
    data = auth.snapshot()
    if isinstance(gate, RouteGate):
        data["gate"] = {
            "refresh_attempted": gate.refresh_attempted,
            "refresh_failed": gate.refresh_failed,
            "watchdog_expired": gate.watchdog_expired,
            "pending": gate.pending,
        }
    return data
