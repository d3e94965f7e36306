"""
In-memory rate limit tracking.

Keeps per-service minute, hour and day counters for the current process.
Counters are reset by comparing wall-clock time on every call; there are no
background timers. State is not shared between processes and is lost on
restart.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from ..config.quotas import ServiceQuota

MINUTE_SECONDS = 60
HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * 60 * 60


@dataclass
class RateLimitState:
    """Rolling counters for one service."""
    minute_key: int
    hour_started: float
    day_started: float
    minute_count: int = 0
    hour_count: int = 0
    day_count: int = 0


@dataclass(frozen=True)
class WindowCheck:
    """Remaining capacity in one quota window."""
    type: str  # "minute", "hour" or "day"
    remaining: int
    limit: int
    exceeded: bool

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "remaining": self.remaining,
            "limit": self.limit,
            "exceeded": self.exceeded,
        }


@dataclass(frozen=True)
class RateLimitCheck:
    """Outcome of checking a service against its quota windows."""
    allowed: bool
    remaining: Optional[int]
    limits: List[WindowCheck] = field(default_factory=list)
    warning_threshold: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limits": [check.to_dict() for check in self.limits],
            "warning_threshold": self.warning_threshold,
        }


class RateLimiter:
    """Per-service call counters with minute, hour and day windows.

    The minute window follows the wall-clock minute. Hour and day windows
    start at the first call after the previous window elapsed.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._states: Dict[str, RateLimitState] = {}
        self._lock = threading.Lock()

    def _roll_windows(self, state: RateLimitState, now: float) -> None:
        minute_key = int(now // MINUTE_SECONDS)
        if state.minute_key != minute_key:
            state.minute_key = minute_key
            state.minute_count = 0

        if now - state.hour_started >= HOUR_SECONDS:
            state.hour_count = 0
            state.hour_started = now

        if now - state.day_started >= DAY_SECONDS:
            state.day_count = 0
            state.day_started = now

    def record(self, service: str) -> RateLimitState:
        """Count one call against every window of a service.

        Returns:
            A copy of the service's state after the update
        """
        with self._lock:
            now = self._clock()
            state = self._states.get(service)
            if state is None:
                state = RateLimitState(
                    minute_key=int(now // MINUTE_SECONDS),
                    hour_started=now,
                    day_started=now,
                )
                self._states[service] = state
            else:
                self._roll_windows(state, now)

            state.minute_count += 1
            state.hour_count += 1
            state.day_count += 1
            return replace(state)

    def snapshot(self, service: str) -> Optional[RateLimitState]:
        """Current counters for a service, with elapsed windows rolled over."""
        with self._lock:
            state = self._states.get(service)
            if state is None:
                return None
            self._roll_windows(state, self._clock())
            return replace(state)

    def check(self, service: str, quota: Optional[ServiceQuota]) -> RateLimitCheck:
        """Check whether a service may make another call.

        Args:
            service: Service key
            quota: The service's quota, or None when it has none

        Returns:
            RateLimitCheck naming the most restrictive window
        """
        if quota is None:
            return RateLimitCheck(allowed=True, remaining=None)

        state = self.snapshot(service)
        if state is None:
            return RateLimitCheck(
                allowed=True,
                remaining=quota.daily_limit or quota.minute_limit or None,
            )

        checks = []
        for window, limit, used in (
            ("minute", quota.minute_limit, state.minute_count),
            ("hour", quota.hourly_limit, state.hour_count),
            ("day", quota.daily_limit, state.day_count),
        ):
            if limit:
                remaining = limit - used
                checks.append(WindowCheck(
                    type=window,
                    remaining=remaining,
                    limit=limit,
                    exceeded=remaining <= 0,
                ))

        if not checks:
            return RateLimitCheck(
                allowed=True,
                remaining=None,
                warning_threshold=quota.warning_threshold,
            )

        most_restrictive = min(checks, key=lambda c: c.remaining)
        return RateLimitCheck(
            allowed=not any(c.exceeded for c in checks),
            remaining=most_restrictive.remaining,
            limits=checks,
            warning_threshold=quota.warning_threshold,
        )

    def reset(self, service: Optional[str] = None) -> None:
        """Forget counters for one service, or for all of them."""
        with self._lock:
            if service is None:
                self._states.clear()
            else:
                self._states.pop(service, None)
