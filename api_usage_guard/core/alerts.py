"""
Threshold checks that raise operator alerts.

Rules:
- QUOTA_WARNING (medium): daily usage crossed the warning threshold.
  At most one open alert per service per calendar day.
- RATE_LIMIT_WARNING (low): minute or hour usage crossed the warning
  threshold. At most one open alert per service per window.
- RATE_LIMIT_EXCEEDED (high): the third party answered 429.
- ERROR_SPIKE (high): error count in the last hour reached the threshold.
  At most one open alert per service per hour.
- SLOW_RESPONSE (low): a successful call exceeded the slow-response time.
  At most one open alert per service per hour.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..config.loader import GuardConfig
from ..config.quotas import percent
from ..storage.models import APIAlert, APICall, AlertSeverity, AlertType
from ..storage.repository import UsageRepository
from .rate_limiter import RateLimitState

logger = logging.getLogger(__name__)


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class AlertMonitor:
    """Evaluates alert rules and persists the alerts they raise."""

    def __init__(
        self,
        repository: UsageRepository,
        config: GuardConfig,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.repository = repository
        self.config = config
        self._clock = clock

    def create_alert(
        self,
        alert_type: AlertType,
        service: str,
        message: str,
        severity: AlertSeverity = AlertSeverity.MEDIUM,
        threshold: Optional[float] = None,
        current_value: Optional[float] = None
    ) -> Optional[APIAlert]:
        """Persist an alert and log it.

        Storage failures are logged, never raised.
        """
        try:
            alert = self.repository.insert_alert(APIAlert(
                alert_type=alert_type.value,
                service=service,
                message=message,
                severity=severity.value,
                threshold=threshold,
                current_value=current_value,
                timestamp=self._clock(),
            ))
        except Exception:
            logger.exception("Failed to create alert for %s", service)
            return None

        logger.warning("[API Alert] %s: %s", severity.value.upper(), message)
        return alert

    def _create_once(
        self,
        since: datetime,
        alert_type: AlertType,
        service: str,
        message_like: Optional[str] = None,
        **kwargs
    ):
        if self.repository.find_open_alert(service, alert_type.value, since, message_like):
            return None
        return self.create_alert(alert_type, service, **kwargs)

    def check_quota_warning(self, service: str, state: RateLimitState) -> Optional[APIAlert]:
        quota = self.config.get_quota(service)
        if quota is None or not quota.daily_limit:
            return None

        usage_ratio = state.day_count / quota.daily_limit
        if not quota.warning_threshold <= usage_ratio < 1:
            return None

        used_percent = percent(state.day_count, quota.daily_limit)
        return self._create_once(
            _midnight(self._clock()),
            AlertType.QUOTA_WARNING,
            service,
            message=f"{quota.name} usage at {used_percent}% of daily limit",
            severity=AlertSeverity.MEDIUM,
            threshold=quota.daily_limit * quota.warning_threshold,
            current_value=state.day_count,
        )

    def check_rate_limit_warning(self, service: str, state: RateLimitState) -> List[APIAlert]:
        """Warn for each window past its threshold, once per window."""
        quota = self.config.get_quota(service)
        if quota is None:
            return []

        now = self._clock()
        windows = (
            ("minute", quota.minute_limit, state.minute_count,
             now.replace(second=0, microsecond=0)),
            ("hour", quota.hourly_limit, state.hour_count,
             datetime.fromtimestamp(state.hour_started)),
        )
        created = []
        for window, limit, used, window_start in windows:
            if not limit:
                continue
            usage_ratio = used / limit
            if not quota.warning_threshold <= usage_ratio < 1:
                continue
            alert = self._create_once(
                window_start,
                AlertType.RATE_LIMIT_WARNING,
                service,
                message_like=f"% this {window}",
                message=f"{quota.name} at {used}/{limit} requests this {window}",
                severity=AlertSeverity.LOW,
                threshold=limit * quota.warning_threshold,
                current_value=used,
            )
            if alert is not None:
                created.append(alert)
        return created

    def check_error_spike(self, service: str) -> Optional[APIAlert]:
        one_hour_ago = self._clock() - timedelta(hours=1)
        recent_errors = self.repository.count_errors_since(service, one_hour_ago)
        if recent_errors < self.config.monitoring.error_spike_threshold:
            return None

        return self._create_once(
            one_hour_ago,
            AlertType.ERROR_SPIKE,
            service,
            message=f"{recent_errors} errors in the last hour for {service}",
            severity=AlertSeverity.HIGH,
            threshold=self.config.monitoring.error_spike_threshold,
            current_value=recent_errors,
        )

    def check_slow_response(self, call: APICall) -> Optional[APIAlert]:
        slow_ms = self.config.monitoring.slow_response_ms
        if not call.success or call.response_time <= slow_ms:
            return None

        return self._create_once(
            self._clock() - timedelta(hours=1),
            AlertType.SLOW_RESPONSE,
            call.service,
            message=f"{call.service} responded in {call.response_time:.0f}ms on {call.endpoint}",
            severity=AlertSeverity.LOW,
            threshold=slow_ms,
            current_value=call.response_time,
        )

    def rate_limit_exceeded(self, service: str, remaining: Optional[float] = None) -> Optional[APIAlert]:
        return self.create_alert(
            AlertType.RATE_LIMIT_EXCEEDED,
            service,
            message=f"Rate limit exceeded for {service}",
            severity=AlertSeverity.HIGH,
            current_value=remaining if remaining is not None else 0,
        )
