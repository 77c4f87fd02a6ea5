from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import streamlit as st

_TRUTHY = {"1", "true", "yes", "on"}
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def get_setting(key: str, default: str | None = None) -> str | None:
    try:
        if key in st.secrets:
            return str(st.secrets[key])
    except Exception:
        # No secrets.toml outside `streamlit run`.
        pass
    return os.environ.get(key, default)


def int_setting(key: str, default: int) -> int:
    raw = get_setting(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def bool_setting(key: str, default: bool = False) -> bool:
    raw = get_setting(key)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def debug_enabled() -> bool:
    return bool_setting("AUTH_DEBUG")


def ensure_logger(logger: logging.Logger) -> logging.Logger:
    # Under a configured root logger (pytest, embedding apps) records
    # propagate there instead of to a stream bound here.
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug_enabled() else logging.INFO)
    return logger


@dataclass(frozen=True)
class AuthSettings:
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_key: str = ""
    session_days: int = 1
    gate_watchdog_seconds: float = 8.0
    cookie_name: str = "admin_suite_auth"
    cookie_secret: str = ""
    debug: bool = False
    dev_tools: bool = False
    app_env: str = "development"

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in {"prod", "production"}

    @property
    def dev_tools_enabled(self) -> bool:
        """Developer-only helpers (forced admin access, role repair) are never
        available in a production environment, whatever ADMIN_DEV_TOOLS says."""
        return self.dev_tools and not self.is_production


def load_auth_settings() -> AuthSettings:
    return AuthSettings(
        supabase_url=(get_setting("SUPABASE_URL", "") or "").strip(),
        supabase_anon_key=(get_setting("SUPABASE_ANON_KEY", "") or "").strip(),
        supabase_service_key=(get_setting("SUPABASE_SERVICE_ROLE_KEY", "") or "").strip(),
        session_days=max(1, int_setting("SESSION_DURATION_DAYS", 1)),
        gate_watchdog_seconds=float(max(1, int_setting("GATE_WATCHDOG_SECONDS", 8))),
        cookie_name=get_setting("AUTH_COOKIE_NAME", "admin_suite_auth") or "admin_suite_auth",
        cookie_secret=(get_setting("AUTH_COOKIE_SECRET", "") or "").strip(),
        debug=debug_enabled(),
        dev_tools=bool_setting("ADMIN_DEV_TOOLS"),
        app_env=get_setting("APP_ENV", "development") or "development",
    )
