"""
Unit tests for usage tracking and alert rules.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from api_usage_guard.config.loader import GuardConfig, MonitoringConfig
from api_usage_guard.config.quotas import DEFAULT_SERVICE_QUOTAS, ServiceQuota
from api_usage_guard.core.tracker import UsageTracker, get_tracker, percent, set_tracker
from api_usage_guard.storage.models import APICall, APIErrorLog
from api_usage_guard.storage.repository import UsageRepository, reset_repository


def _config(**monitoring):
    services = dict(DEFAULT_SERVICE_QUOTAS)
    services["gemini"] = ServiceQuota(name="Gemini", daily_limit=10, minute_limit=100)
    services["eventbrite"] = ServiceQuota(name="Eventbrite", minute_limit=5)
    return GuardConfig(services=services, monitoring=MonitoringConfig(**monitoring))


@pytest.fixture
def small_tracker(repository, clock):
    return UsageTracker(repository, _config(error_spike_threshold=3, slow_response_ms=500), clock=clock)


def _call(clock, service="gemini", **kwargs):
    kwargs.setdefault("response_time", 100.0)
    kwargs.setdefault("success", True)
    kwargs.setdefault("status_code", 200)
    return APICall(service=service, endpoint="/v1/test", timestamp=clock.now, **kwargs)


def _error(clock, service="gemini"):
    return APIErrorLog(
        service=service, endpoint="/v1/test", error_message="HTTP 500",
        status_code=500, timestamp=clock.now,
    )


def _alerts(repository, alert_type):
    alerts, _ = repository.find_alerts(alert_type=alert_type, limit=-1)
    return alerts


class TestPercent:
    def test_rounds_half_up(self):
        assert percent(1, 8) == 13
        assert percent(1, 3) == 33
        assert percent(0, 10) == 0
        assert percent(10, 10) == 100


class TestTrackApiCall:
    """Test recording calls through the tracker."""

    def test_records_usage_and_counters(self, tracker, clock):
        tracker.track_api_call(_call(clock))
        tracker.track_api_call(_call(clock, success=False, status_code=500))

        usage = tracker.repository.get_usage("gemini", clock.now.date())
        assert usage.total_requests == 2
        assert usage.failed_requests == 1
        assert tracker.limiter.snapshot("gemini").minute_count == 2

    def test_storage_failure_is_swallowed(self, clock):
        repo = Mock(spec=UsageRepository)
        repo.record_api_call.side_effect = RuntimeError("disk full")
        tracker = UsageTracker(repo, clock=clock)

        tracker.track_api_call(_call(clock))

    def test_error_log_failure_is_swallowed(self, clock):
        repo = Mock(spec=UsageRepository)
        repo.insert_error_log.side_effect = RuntimeError("disk full")
        tracker = UsageTracker(repo, clock=clock)

        tracker.log_api_error(_error(clock))

    def test_service_without_quota_is_recorded(self, tracker, clock):
        tracker.track_api_call(_call(clock, service="other"))
        assert tracker.repository.get_usage("other", clock.now.date()).total_requests == 1


class TestQuotaWarning:
    """Test daily quota warning alerts."""

    def test_warning_at_threshold(self, small_tracker, clock):
        for _ in range(7):
            small_tracker.track_api_call(_call(clock))
        assert _alerts(small_tracker.repository, "QUOTA_WARNING") == []

        small_tracker.track_api_call(_call(clock))

        alerts = _alerts(small_tracker.repository, "QUOTA_WARNING")
        assert len(alerts) == 1
        assert alerts[0].severity == "medium"
        assert alerts[0].current_value == 8
        assert alerts[0].threshold == 8
        assert "80%" in alerts[0].message

    def test_message_percent_rounds_half_up(self, repository, clock):
        config = GuardConfig(services={
            "gemini": ServiceQuota(name="Gemini", daily_limit=40, warning_threshold=0.825)
        })
        tracker = UsageTracker(repository, config, clock=clock)

        for _ in range(33):
            tracker.track_api_call(_call(clock))

        alerts = _alerts(repository, "QUOTA_WARNING")
        assert len(alerts) == 1
        assert alerts[0].message == "Gemini usage at 83% of daily limit"

    def test_warning_is_raised_once_per_day(self, small_tracker, clock):
        for _ in range(9):
            small_tracker.track_api_call(_call(clock))
        assert len(_alerts(small_tracker.repository, "QUOTA_WARNING")) == 1

    def test_acknowledged_warning_can_fire_again(self, small_tracker, clock):
        for _ in range(8):
            small_tracker.track_api_call(_call(clock))
        alert = _alerts(small_tracker.repository, "QUOTA_WARNING")[0]
        small_tracker.repository.acknowledge_alert(alert.id)

        small_tracker.track_api_call(_call(clock))
        assert len(_alerts(small_tracker.repository, "QUOTA_WARNING")) == 2

    def test_no_warning_at_limit(self, repository, clock):
        config = GuardConfig(services={
            "gemini": ServiceQuota(name="Gemini", daily_limit=1, warning_threshold=0.5)
        })
        tracker = UsageTracker(repository, config, clock=clock)

        tracker.track_api_call(_call(clock))
        assert _alerts(repository, "QUOTA_WARNING") == []


class TestRateLimitWarning:
    def test_minute_warning(self, small_tracker, clock):
        for _ in range(4):
            small_tracker.track_api_call(_call(clock, service="eventbrite"))

        alerts = _alerts(small_tracker.repository, "RATE_LIMIT_WARNING")
        assert len(alerts) == 1
        assert alerts[0].severity == "low"
        assert "4/5" in alerts[0].message

    def test_hour_warning_after_minute_warning(self, repository, clock):
        config = GuardConfig(services={
            "eventbrite": ServiceQuota(name="Eventbrite", minute_limit=5, hourly_limit=10)
        })
        tracker = UsageTracker(repository, config, clock=clock)

        for _ in range(4):
            tracker.track_api_call(_call(clock, service="eventbrite"))
        clock.advance(minutes=1)
        for _ in range(4):
            tracker.track_api_call(_call(clock, service="eventbrite"))

        messages = [a.message for a in _alerts(repository, "RATE_LIMIT_WARNING")]
        assert "Eventbrite at 8/10 requests this hour" in messages
        assert messages.count("Eventbrite at 4/5 requests this minute") == 2

    def test_hour_warning_is_raised_once_per_window(self, repository, clock):
        config = GuardConfig(services={
            "eventbrite": ServiceQuota(name="Eventbrite", hourly_limit=10)
        })
        tracker = UsageTracker(repository, config, clock=clock)

        for _ in range(9):
            tracker.track_api_call(_call(clock, service="eventbrite"))

        alerts = _alerts(repository, "RATE_LIMIT_WARNING")
        assert len(alerts) == 1
        assert alerts[0].current_value == 8

    def test_both_windows_warn_on_the_same_call(self, repository, clock):
        config = GuardConfig(services={
            "eventbrite": ServiceQuota(name="Eventbrite", minute_limit=5, hourly_limit=5)
        })
        tracker = UsageTracker(repository, config, clock=clock)
        state = tracker.limiter.record("eventbrite")
        for _ in range(3):
            state = tracker.limiter.record("eventbrite")

        created = tracker.alerts.check_rate_limit_warning("eventbrite", state)

        assert [a.message for a in created] == [
            "Eventbrite at 4/5 requests this minute",
            "Eventbrite at 4/5 requests this hour",
        ]

    def test_rate_limit_exceeded_alert(self, tracker, clock):
        tracker.record_rate_limit_response("github", 0)

        alerts = _alerts(tracker.repository, "RATE_LIMIT_EXCEEDED")
        assert len(alerts) == 1
        assert alerts[0].severity == "high"
        assert alerts[0].current_value == 0
        assert alerts[0].message == "Rate limit exceeded for github"


class TestErrorSpike:
    def test_spike_at_threshold(self, small_tracker, clock):
        small_tracker.log_api_error(_error(clock))
        small_tracker.log_api_error(_error(clock))
        assert _alerts(small_tracker.repository, "ERROR_SPIKE") == []

        small_tracker.log_api_error(_error(clock))

        alerts = _alerts(small_tracker.repository, "ERROR_SPIKE")
        assert len(alerts) == 1
        assert alerts[0].severity == "high"
        assert alerts[0].current_value == 3

    def test_spike_is_not_repeated_within_the_hour(self, small_tracker, clock):
        for _ in range(5):
            small_tracker.log_api_error(_error(clock))
        assert len(_alerts(small_tracker.repository, "ERROR_SPIKE")) == 1

    def test_old_errors_do_not_count(self, small_tracker, clock):
        small_tracker.log_api_error(_error(clock))
        small_tracker.log_api_error(_error(clock))
        clock.advance(hours=2)
        small_tracker.log_api_error(_error(clock))

        assert _alerts(small_tracker.repository, "ERROR_SPIKE") == []

    def test_spike_is_per_service(self, small_tracker, clock):
        small_tracker.log_api_error(_error(clock, "gemini"))
        small_tracker.log_api_error(_error(clock, "github"))
        small_tracker.log_api_error(_error(clock, "bls"))

        assert _alerts(small_tracker.repository, "ERROR_SPIKE") == []


class TestSlowResponse:
    def test_slow_successful_call(self, small_tracker, clock):
        small_tracker.track_api_call(_call(clock, response_time=800))

        alerts = _alerts(small_tracker.repository, "SLOW_RESPONSE")
        assert len(alerts) == 1
        assert alerts[0].current_value == 800

    def test_slow_failed_call_is_ignored(self, small_tracker, clock):
        small_tracker.track_api_call(_call(clock, response_time=800, success=False, status_code=504))
        assert _alerts(small_tracker.repository, "SLOW_RESPONSE") == []


class TestRemainingQuota:
    """Test remaining quota reporting."""

    def test_service_without_quota(self, tracker):
        result = tracker.get_remaining_quota("other")
        assert result == {
            "service": "other",
            "has_quota": False,
            "message": "No quota limits defined",
        }

    def test_daily_and_minute(self, tracker, clock):
        for _ in range(3):
            tracker.track_api_call(_call(clock))

        result = tracker.get_remaining_quota("gemini")

        assert result["has_quota"] is True
        assert result["service_name"] == "Google Gemini AI"
        assert result["limits"]["daily"] == {
            "limit": 1500, "used": 3, "remaining": 1497, "percent_used": 0,
        }
        assert result["limits"]["per_minute"] == {"limit": 15, "used": 3, "remaining": 12}

    def test_window_limits_need_a_call(self, tracker):
        result = tracker.get_remaining_quota("gemini")
        assert result["limits"]["daily"]["used"] == 0
        assert "per_minute" not in result["limits"]

    def test_remaining_never_negative(self, repository, clock):
        config = GuardConfig(services={"bls": ServiceQuota(name="BLS", daily_limit=2)})
        tracker = UsageTracker(repository, config, clock=clock)
        for _ in range(3):
            tracker.track_api_call(_call(clock, service="bls"))

        daily = tracker.get_remaining_quota("bls")["limits"]["daily"]
        assert daily["remaining"] == 0
        assert daily["percent_used"] == 150

    def test_monthly_counts_earlier_days(self, tracker, clock):
        tracker.track_api_call(_call(clock, service="clerk"))
        clock.advance(days=1)
        tracker.track_api_call(_call(clock, service="clerk"))

        monthly = tracker.get_remaining_quota("clerk")["limits"]["monthly"]
        assert monthly["used"] == 2
        assert monthly["remaining"] == 9998

    def test_hourly(self, tracker, clock):
        tracker.track_api_call(_call(clock, service="github"))
        per_hour = tracker.get_remaining_quota("github")["limits"]["per_hour"]
        assert per_hour == {"limit": 60, "used": 1, "remaining": 59}


class TestSharedTracker:
    def test_get_tracker_uses_environment(self, monkeypatch, db_path):
        monkeypatch.setenv("API_USAGE_GUARD_DB", db_path)
        monkeypatch.delenv("API_USAGE_GUARD_CONFIG", raising=False)
        reset_repository()
        set_tracker(None)
        try:
            tracker = get_tracker()
            assert tracker.repository.db_path == db_path
            assert get_tracker() is tracker
        finally:
            set_tracker(None)
            reset_repository()
