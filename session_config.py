from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR
MIN_REFRESH_FLOOR_SECONDS = 30 * 60


@dataclass(frozen=True)
class SessionConfig:
    session_duration_seconds: int
    session_duration_ms: int
    session_duration_human: str
    session_refresh_interval_ms: int
    route_refresh_interval_ms: int
    min_refresh_interval_ms: int

    @property
    def session_refresh_interval_seconds(self) -> float:
        return self.session_refresh_interval_ms / 1000.0

    @property
    def route_refresh_interval_seconds(self) -> float:
        return self.route_refresh_interval_ms / 1000.0

    @property
    def min_refresh_interval_seconds(self) -> float:
        return self.min_refresh_interval_ms / 1000.0


def _human_duration(seconds: int) -> str:
    if seconds % SECONDS_PER_DAY == 0:
        days = seconds // SECONDS_PER_DAY
        return f"{days} day" if days == 1 else f"{days} days"
    hours = round(seconds / SECONDS_PER_HOUR)
    return f"{hours} hour" if hours == 1 else f"{hours} hours"


@lru_cache(maxsize=8)
def session_config(days: float = 1) -> SessionConfig:
    """Time constants derived from the session validity in days.

    Background and route refreshes run four times per session lifetime
    (every 6 hours for the default 1 day session); the minimum gap between
    refreshes is 30 minutes, never longer than the refresh interval itself.
    """
    if days <= 0:
        raise ValueError(f"session duration must be positive, got {days!r} days")
    seconds = int(round(days * SECONDS_PER_DAY))
    refresh_seconds = seconds // 4
    min_refresh_seconds = min(MIN_REFRESH_FLOOR_SECONDS, refresh_seconds)
    return SessionConfig(
        session_duration_seconds=seconds,
        session_duration_ms=seconds * 1000,
        session_duration_human=_human_duration(seconds),
        session_refresh_interval_ms=refresh_seconds * 1000,
        route_refresh_interval_ms=refresh_seconds * 1000,
        min_refresh_interval_ms=min_refresh_seconds * 1000,
    )
