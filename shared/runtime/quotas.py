from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional


# ======================================================================
# Exceptions
# ======================================================================

class QuotaExceeded(RuntimeError):
    """Raised when a call would push usage past the daily hard limit."""


class QuotaBufferWarning(RuntimeError):
    """
    Raised once when usage enters the configured buffer zone.
    The units are still consumed; callers log and continue.
    """


# ======================================================================
# Data Models
# ======================================================================

def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DailyQuota:
    """Cumulative usage for a single UTC day."""
    day: date
    used: int = 0

    def reset_if_new_day(self, today: date) -> bool:
        if self.day != today:
            self.day = today
            self.used = 0
            return True
        return False


@dataclass
class QuotaPolicy:
    max_units: int
    buffer_units: int = 0

    @property
    def hard_limit(self) -> int:
        return self.max_units

    @property
    def buffer_threshold(self) -> int:
        return max(0, self.max_units - self.buffer_units)


# ======================================================================
# Quota Tracker
# ======================================================================

class QuotaTracker:
    """
    Daily Data API unit tracker for one API key.

    - Tracks cumulative usage
    - Enforces buffer + hard caps
    - Resets automatically on UTC day rollover
    """

    def __init__(
        self,
        *,
        scope: str,
        platform: str,
        policy: QuotaPolicy,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.scope = scope
        self.platform = platform
        self.policy = policy
        self._clock = clock
        self.state = DailyQuota(day=self._clock().date())

    def _rollover(self) -> None:
        self.state.reset_if_new_day(self._clock().date())

    # --------------------------------------------------

    def consume(self, units: int) -> None:
        if units <= 0:
            return

        self._rollover()
        projected = self.state.used + units

        if projected > self.policy.hard_limit:
            raise QuotaExceeded(
                f"[{self.platform}][{self.scope}] Quota exceeded: "
                f"{projected} / {self.policy.hard_limit}"
            )

        entering_buffer = (
            self.state.used < self.policy.buffer_threshold
            and projected >= self.policy.buffer_threshold
        )
        self.state.used = projected

        if entering_buffer:
            raise QuotaBufferWarning(
                f"[{self.platform}][{self.scope}] Quota buffer entered: "
                f"{projected} / {self.policy.hard_limit}"
            )

    def can_consume(self, units: int) -> bool:
        self._rollover()
        return self.state.used + max(0, units) <= self.policy.hard_limit

    # --------------------------------------------------

    def reset_at(self) -> datetime:
        now = self._clock()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + timedelta(days=1)

    def snapshot(self) -> Dict[str, object]:
        self._rollover()
        return {
            "used": self.state.used,
            "remaining": max(0, self.policy.hard_limit - self.state.used),
            "max": self.policy.hard_limit,
            "buffer": self.policy.buffer_units,
            "status": self.status(),
            "reset_at": self.reset_at().isoformat().replace("+00:00", "Z"),
        }

    def status(self) -> str:
        if self.state.used >= self.policy.hard_limit:
            return "exhausted"
        if self.state.used >= self.policy.buffer_threshold:
            return "buffer"
        return "ok"


# ======================================================================
# Registry
# ======================================================================

class QuotaRegistry:
    """Process-wide registry of quota trackers keyed by platform and scope."""

    def __init__(self):
        self._trackers: Dict[str, QuotaTracker] = {}

    @staticmethod
    def _key(scope: str, platform: str) -> str:
        return f"{platform}:{scope}"

    def register(
        self,
        *,
        scope: str,
        platform: str,
        max_units: int,
        buffer_units: int = 0,
    ) -> QuotaTracker:
        tracker = QuotaTracker(
            scope=scope,
            platform=platform,
            policy=QuotaPolicy(max_units=max_units, buffer_units=buffer_units),
        )
        self._trackers[self._key(scope, platform)] = tracker
        return tracker

    def get(self, *, scope: str, platform: str) -> Optional[QuotaTracker]:
        return self._trackers.get(self._key(scope, platform))

    def all(self) -> List[QuotaTracker]:
        return list(self._trackers.values())

    def clear(self) -> None:
        self._trackers.clear()


quota_registry = QuotaRegistry()


__all__ = [
    "DailyQuota",
    "QuotaBufferWarning",
    "QuotaExceeded",
    "QuotaPolicy",
    "QuotaRegistry",
    "QuotaTracker",
    "quota_registry",
]
