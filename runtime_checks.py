from __future__ import annotations

import logging
from typing import Any

import streamlit as st

from settings import AuthSettings, ensure_logger, load_auth_settings

_LOGGED_EVENTS: set[str] = set()
RUNTIME_LOGGER = logging.getLogger("runtime_checks")


def _log_once(key: str, level: int, message: str) -> None:
    if key in _LOGGED_EVENTS:
        return
    ensure_logger(RUNTIME_LOGGER)
    RUNTIME_LOGGER.log(level, message)
    _LOGGED_EVENTS.add(key)


def check_auth_settings(settings: AuthSettings) -> dict[str, Any]:
    missing: list[str] = []
    for key, value in (
        ("SUPABASE_URL", settings.supabase_url),
        ("SUPABASE_ANON_KEY", settings.supabase_anon_key),
    ):
        if not value:
            missing.append(key)
            _log_once(f"missing:{key}", logging.WARNING, f"Missing runtime config key: {key}")
    if not settings.cookie_secret:
        _log_once(
            "missing:AUTH_COOKIE_SECRET",
            logging.WARNING,
            "AUTH_COOKIE_SECRET not set; sessions will not survive a page reload",
        )
    if not settings.supabase_service_key:
        _log_once(
            "absent:SUPABASE_SERVICE_ROLE_KEY",
            logging.INFO,
            "No service role key; privileged repair actions are unavailable",
        )
    if settings.dev_tools and settings.is_production:
        _log_once(
            "dev_tools:production",
            logging.ERROR,
            "ADMIN_DEV_TOOLS is set in production; developer tools stay disabled",
        )
    return {
        "missing": missing,
        "elevated": bool(settings.supabase_service_key),
        "persistent_sessions": bool(settings.cookie_secret),
        "dev_tools": settings.dev_tools_enabled,
    }


@st.cache_resource(show_spinner=False)
def validate_runtime_config() -> dict[str, Any]:
    return check_auth_settings(load_auth_settings())
