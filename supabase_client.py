from __future__ import annotations

import logging
from typing import Any, Callable

from supabase import Client, ClientOptions, create_client

from auth_models import ConfigurationMissing
from settings import AuthSettings, ensure_logger

SUPABASE_LOGGER = logging.getLogger("supabase_client")

ClientFactory = Callable[[str, str, ClientOptions], Any]


class UnconfiguredClient:
    """Stand-in handle used when SUPABASE_URL or the public key is missing.

    Construction always succeeds; any use of the handle raises
    ConfigurationMissing, so auth calls fail where they are made.
    """

    def __init__(self, missing: list[str]) -> None:
        self._missing = list(missing)

    def __getattr__(self, name: str) -> Any:
        raise ConfigurationMissing(
            f"Supabase is not configured (missing: {', '.join(self._missing)}); "
            f"cannot use client.{name}"
        )


def _default_factory(url: str, key: str, options: ClientOptions) -> Client:
    return create_client(url, key, options=options)


def _mask_url(url: str) -> str:
    return url[:8] + "..." if url else "Missing"


class CredentialStore:
    """Standard (row-level secured) and optional elevated Supabase handles.

    One store is built per auth context. The standard handle carries the
    signed-in user's tokens, so it must never be shared between browser
    sessions. The elevated handle uses the service-role key and bypasses
    row-level security; it exists only when that key is configured.
    """

    def __init__(
        self,
        settings: AuthSettings,
        client_factory: ClientFactory | None = None,
    ) -> None:
        ensure_logger(SUPABASE_LOGGER)
        self._settings = settings
        self._factory = client_factory or _default_factory
        self._standard: Any = None
        self._elevated: Any = None
        self._elevated_built = False
        self.missing = [
            key
            for key, value in (
                ("SUPABASE_URL", settings.supabase_url),
                ("SUPABASE_ANON_KEY", settings.supabase_anon_key),
            )
            if not value
        ]
        if self.missing:
            SUPABASE_LOGGER.warning(
                "Missing required Supabase configuration: %s. "
                "Authentication and data operations will fail.",
                ", ".join(self.missing),
            )
        if settings.debug:
            SUPABASE_LOGGER.debug(
                "Supabase configuration url=%s key=%s service_key=%s",
                _mask_url(settings.supabase_url),
                "present (masked)" if settings.supabase_anon_key else "Missing",
                "present (masked)" if settings.supabase_service_key else "absent",
            )

    @property
    def configured(self) -> bool:
        return not self.missing

    @property
    def has_elevated_access(self) -> bool:
        return self.elevated_handle() is not None

    def standard_handle(self) -> Any:
        if self._standard is None:
            if self.missing:
                self._standard = UnconfiguredClient(self.missing)
            else:
                # Refresh and persistence are driven by AuthContext.
                options = ClientOptions(auto_refresh_token=False, persist_session=False)
                self._standard = self._factory(
                    self._settings.supabase_url,
                    self._settings.supabase_anon_key,
                    options,
                )
        return self._standard

    def elevated_handle(self) -> Any | None:
        if not self._elevated_built:
            self._elevated_built = True
            if self._settings.supabase_service_key and self._settings.supabase_url:
                options = ClientOptions(auto_refresh_token=False, persist_session=False)
                self._elevated = self._factory(
                    self._settings.supabase_url,
                    self._settings.supabase_service_key,
                    options,
                )
                SUPABASE_LOGGER.debug("Elevated Supabase handle created")
        return self._elevated

    def reset(self) -> None:
        """Drop the standard handle so the next use starts without tokens."""
        self._standard = None
