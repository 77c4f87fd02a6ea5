from __future__ import annotations

import hashlib
import logging
from typing import Any, Protocol

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from auth_models import SessionInfo
from settings import ensure_logger

STORE_LOGGER = logging.getLogger("session_store")
_SALT = "admin-suite-session"


class SessionStore(Protocol):
    def load(self) -> SessionInfo | None: ...

    def save(self, session: SessionInfo) -> None: ...

    def clear(self) -> None: ...


def _token_fingerprint(token: str) -> str:
    try:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()[:10]
    except Exception:
        return "unknown"


def _to_payload(session: SessionInfo) -> dict[str, Any]:
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "expires_at": session.expires_at,
        "user_id": session.user_id,
        "email": session.email,
    }


def _from_payload(data: Any) -> SessionInfo | None:
    if not isinstance(data, dict):
        return None
    if not data.get("user_id") or not data.get("refresh_token"):
        return None
    expires_at = data.get("expires_at")
    return SessionInfo(
        access_token=str(data.get("access_token") or ""),
        refresh_token=str(data["refresh_token"]),
        expires_at=float(expires_at) if expires_at is not None else None,
        user_id=str(data["user_id"]),
        email=data.get("email"),
    )


class MemorySessionStore:
    """Keeps the session for the life of the process (tests, CLI)."""

    def __init__(self, session: SessionInfo | None = None) -> None:
        self.session = session

    def load(self) -> SessionInfo | None:
        return self.session

    def save(self, session: SessionInfo) -> None:
        self.session = session

    def clear(self) -> None:
        self.session = None


class CookieSessionStore:
    """Signed browser cookie holding the token pair between page loads.

    ``cookies`` is a ``streamlit_cookies_manager.CookieManager`` (or any
    mapping with ``ready()`` and ``save()``).
    """

    def __init__(self, cookies: Any, secret: str, name: str, max_age_seconds: int) -> None:
        ensure_logger(STORE_LOGGER)
        self._cookies = cookies
        self._serializer = URLSafeTimedSerializer(secret, salt=_SALT)
        self._name = name
        self._max_age = max(1, int(max_age_seconds))

    def _ready(self) -> bool:
        try:
            return bool(self._cookies.ready())
        except Exception:
            return False

    def _save_cookies(self) -> None:
        try:
            self._cookies.save()
        except Exception as exc:
            STORE_LOGGER.warning("cookie save failed: %s", exc)

    def _drop(self, reason: str) -> None:
        if self._cookies.get(self._name) is not None:
            del self._cookies[self._name]
            self._save_cookies()
        STORE_LOGGER.debug("session cookie dropped reason=%s", reason)

    def load(self) -> SessionInfo | None:
        if not self._ready():
            return None
        token = self._cookies.get(self._name)
        if not token:
            return None
        try:
            data = self._serializer.loads(token, max_age=self._max_age)
        except SignatureExpired:
            self._drop("expired")
            return None
        except BadSignature:
            STORE_LOGGER.warning("session cookie bad signature fp=%s", _token_fingerprint(token))
            self._drop("bad_signature")
            return None
        session = _from_payload(data)
        if session is None:
            self._drop("invalid_payload")
        return session

    def save(self, session: SessionInfo) -> None:
        if not self._ready():
            STORE_LOGGER.debug("cookie manager not ready; session not persisted")
            return
        token = self._serializer.dumps(_to_payload(session))
        self._cookies[self._name] = token
        self._save_cookies()
        STORE_LOGGER.debug("session cookie stored fp=%s", _token_fingerprint(token))

    def clear(self) -> None:
        if not self._ready():
            return
        self._drop("sign_out")
