"""Session tracker: how long the user has been at it since the last rest."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .protocols import ClockProtocol

logger = logging.getLogger("companion_thoughts.session")

LONG_SESSION_MINUTES = 20.0


class SessionTracker:
    """Monotonic elapsed-time counter with a long-session threshold."""

    def __init__(self, clock: ClockProtocol, threshold_minutes: float = LONG_SESSION_MINUTES):
        self.clock = clock
        self.threshold_seconds = threshold_minutes * 60.0
        self._started_at = clock.monotonic()
        self._last_reset = self._started_at
        self._started_wall = clock.now()
        self._last_reset_wall = self._started_wall

    def reset_timer(self) -> None:
        """Start a new session, typically right after a rest message went out."""
        self._last_reset = self.clock.monotonic()
        self._last_reset_wall = self.clock.now()
        logger.info("Session timer reset")

    def elapsed_seconds(self) -> float:
        return self.clock.monotonic() - self._last_reset

    def is_long_session(self) -> bool:
        return self.elapsed_seconds() >= self.threshold_seconds

    def elapsed_minutes(self) -> int:
        return int(self.elapsed_seconds() // 60)

    def total_minutes(self) -> int:
        return int((self.clock.monotonic() - self._started_at) // 60)

    def usage_stats(self) -> dict[str, Any]:
        elapsed = timedelta(seconds=self.elapsed_seconds())
        return {
            "total_minutes": self.total_minutes(),
            "minutes_since_last_reset": self.elapsed_minutes(),
            "is_long_session": self.is_long_session(),
            "started_at": self._started_wall.isoformat(timespec="seconds"),
            "last_reset_at": self._last_reset_wall.isoformat(timespec="seconds"),
            "elapsed": str(elapsed).split(".")[0],
        }
