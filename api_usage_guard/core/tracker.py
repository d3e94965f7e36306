"""
Usage tracking for third-party API calls.

Central entry point used by the tracked clients: records calls and errors,
keeps the in-memory rate limit counters current and runs alert checks.

Tracking never breaks the caller. Storage failures inside track_api_call
and log_api_error are logged and swallowed.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from ..config.loader import GuardConfig, load_config, load_settings
from ..config.quotas import percent
from ..storage.models import APICall, APIErrorLog
from ..storage.repository import UsageRepository, get_repository
from .alerts import AlertMonitor
from .rate_limiter import RateLimitCheck, RateLimiter

logger = logging.getLogger(__name__)


class UsageTracker:
    """Tracks calls per service against quotas and thresholds."""

    def __init__(
        self,
        repository: UsageRepository,
        config: Optional[GuardConfig] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """Initialize the tracker.

        Args:
            repository: Storage for usage, error logs and alerts
            config: Quotas and thresholds (built-in defaults when omitted)
            clock: Source of the current local time
        """
        self.repository = repository
        self.config = config or GuardConfig()
        self._clock = clock
        self.limiter = RateLimiter(clock=lambda: self._clock().timestamp())
        self.alerts = AlertMonitor(repository, self.config, clock=clock)

    def track_api_call(self, call: APICall) -> None:
        """Record a call, update rate limit counters and check thresholds."""
        try:
            self.repository.record_api_call(call)
            state = self.limiter.record(call.service)
            self.alerts.check_quota_warning(call.service, state)
            self.alerts.check_rate_limit_warning(call.service, state)
            self.alerts.check_slow_response(call)
        except Exception:
            logger.exception("Failed to track API call for %s", call.service)

    def log_api_error(self, error: APIErrorLog) -> None:
        """Persist an error log and check for an error spike."""
        try:
            self.repository.insert_error_log(error)
            self.alerts.check_error_spike(error.service)
        except Exception:
            logger.exception("Failed to log API error for %s", error.service)

    def record_rate_limit_response(self, service: str, remaining: Optional[float] = None) -> None:
        """Raise a RATE_LIMIT_EXCEEDED alert after a 429 response."""
        self.alerts.rate_limit_exceeded(service, remaining)

    def check_rate_limit(self, service: str) -> RateLimitCheck:
        return self.limiter.check(service, self.config.get_quota(service))

    def get_remaining_quota(self, service: str) -> Dict[str, Any]:
        """Remaining capacity for a service across every configured window.

        Daily and monthly figures come from persisted usage. Minute and hour
        figures come from this process's counters and only appear once the
        service has been called.
        """
        quota = self.config.get_quota(service)
        if quota is None:
            return {"service": service, "has_quota": False, "message": "No quota limits defined"}

        today = self._clock().date()
        usage = self.repository.get_usage(service, today)
        total_requests = usage.total_requests if usage else 0

        result: Dict[str, Any] = {
            "service": service,
            "service_name": quota.name,
            "has_quota": True,
            "limits": {},
        }

        if quota.daily_limit:
            result["limits"]["daily"] = {
                "limit": quota.daily_limit,
                "used": total_requests,
                "remaining": max(0, quota.daily_limit - total_requests),
                "percent_used": percent(total_requests, quota.daily_limit),
            }

        if quota.monthly_limit:
            month_start = date(today.year, today.month, 1)
            monthly_used = self.repository.get_total_requests_since(service, month_start)
            result["limits"]["monthly"] = {
                "limit": quota.monthly_limit,
                "used": monthly_used,
                "remaining": max(0, quota.monthly_limit - monthly_used),
                "percent_used": percent(monthly_used, quota.monthly_limit),
            }

        state = self.limiter.snapshot(service)
        if state:
            if quota.minute_limit:
                result["limits"]["per_minute"] = {
                    "limit": quota.minute_limit,
                    "used": state.minute_count,
                    "remaining": max(0, quota.minute_limit - state.minute_count),
                }
            if quota.hourly_limit:
                result["limits"]["per_hour"] = {
                    "limit": quota.hourly_limit,
                    "used": state.hour_count,
                    "remaining": max(0, quota.hourly_limit - state.hour_count),
                }

        return result

    def now(self) -> datetime:
        return self._clock()


# Global tracker instance
_default_tracker: Optional[UsageTracker] = None


def get_tracker() -> UsageTracker:
    """Get the shared tracker, built from environment settings on first use."""
    global _default_tracker
    if _default_tracker is None:
        settings = load_settings()
        _default_tracker = UsageTracker(get_repository(settings.db_path), load_config(settings))
    return _default_tracker


def set_tracker(tracker: Optional[UsageTracker]) -> None:
    """Replace the shared tracker (None rebuilds it on next use)."""
    global _default_tracker
    _default_tracker = tracker
