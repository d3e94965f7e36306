"""
Unit tests for monitoring report builders.
"""

from datetime import date, timedelta

import pytest

from api_usage_guard.config.loader import GuardConfig
from api_usage_guard.config.quotas import DEFAULT_SERVICE_QUOTAS, ServiceQuota
from api_usage_guard.core import reports
from api_usage_guard.core.errors import UnknownServiceError
from api_usage_guard.core.tracker import UsageTracker
from api_usage_guard.storage.models import APIAlert, APICall, APIErrorLog, ServiceUsage


def _track(tracker, clock, service="gemini", count=1, **kwargs):
    kwargs.setdefault("response_time", 100.0)
    kwargs.setdefault("success", True)
    kwargs.setdefault("status_code", 200 if kwargs["success"] else 500)
    for _ in range(count):
        tracker.track_api_call(APICall(
            service=service, endpoint="/v1/test", timestamp=clock.now, **kwargs
        ))


def _usage(total=10, failed=0, avg=100.0):
    return ServiceUsage(
        service="gemini",
        date=date(2026, 3, 10),
        total_requests=total,
        successful_requests=total - failed,
        failed_requests=failed,
        avg_response_time=avg,
    )


def _quota_status(percent_used):
    return {"limits": {"daily": {"percent_used": percent_used}}}


class TestServiceStatus:
    def test_inactive(self):
        assert reports.get_service_status(None, None) == "inactive"

    def test_error_rates(self):
        assert reports.get_service_status(_usage(failed=3), None) == "critical"
        assert reports.get_service_status(_usage(total=20, failed=3), None) == "warning"
        assert reports.get_service_status(_usage(failed=1), None) == "healthy"

    def test_quota_usage(self):
        assert reports.get_service_status(_usage(), _quota_status(95)) == "quota-critical"
        assert reports.get_service_status(_usage(), _quota_status(85)) == "quota-warning"
        assert reports.get_service_status(_usage(), _quota_status(50)) == "healthy"

    def test_slow(self):
        assert reports.get_service_status(_usage(avg=2500), None) == "slow"

    def test_errors_take_precedence_over_quota(self):
        assert reports.get_service_status(_usage(failed=5), _quota_status(95)) == "critical"


class TestDashboard:
    """Test the dashboard overview."""

    def test_idle_dashboard(self, tracker):
        dashboard = reports.build_dashboard(tracker)

        assert dashboard["overview"]["today"]["requests"] == 0
        assert dashboard["overview"]["today"]["success_rate"] == 100
        assert dashboard["overview"]["active_alert_count"] == 0
        assert len(dashboard["services"]) == len(DEFAULT_SERVICE_QUOTAS)
        assert {s["status"] for s in dashboard["services"]} == {"inactive"}

    def test_dashboard_with_traffic(self, tracker, clock):
        _track(tracker, clock, count=3)
        _track(tracker, clock, success=False)
        _track(tracker, clock, service="github", count=2)
        tracker.log_api_error(APIErrorLog(
            service="gemini", endpoint="/v1/test", error_message="HTTP 500",
            timestamp=clock.now,
        ))

        dashboard = reports.build_dashboard(tracker)
        overview = dashboard["overview"]

        assert overview["today"]["requests"] == 6
        assert overview["today"]["failed"] == 1
        assert overview["today"]["success_rate"] == 83.3
        assert overview["weekly"]["requests"] == 6
        assert overview["recent_error_count"] == 1

        gemini = [s for s in dashboard["services"] if s["id"] == "gemini"][0]
        assert gemini["name"] == "Google Gemini AI"
        assert gemini["today"] == {"requests": 4, "errors": 1, "avg_response_time": 100}
        assert gemini["status"] == "critical"
        assert gemini["quota"]["daily"]["used"] == 4

        quota_services = {q["service"] for q in dashboard["quota_statuses"]}
        assert "gemini" in quota_services

    def test_dashboard_lists_unacknowledged_alerts(self, tracker, clock):
        tracker.repository.insert_alert(APIAlert(
            alert_type="ERROR_SPIKE", service="gemini", message="spike",
            severity="high", timestamp=clock.now,
        ))
        acknowledged = tracker.repository.insert_alert(APIAlert(
            alert_type="ERROR_SPIKE", service="bls", message="spike",
            severity="high", timestamp=clock.now,
        ))
        tracker.repository.acknowledge_alert(acknowledged.id)

        dashboard = reports.build_dashboard(tracker)

        assert dashboard["overview"]["active_alert_count"] == 1
        assert dashboard["alerts"][0]["service"] == "gemini"


class TestServiceUsage:
    def test_unknown_service(self, tracker):
        with pytest.raises(UnknownServiceError, match="Invalid service name: myspace"):
            reports.build_service_usage(tracker, "myspace")

    def test_trends(self, tracker, clock):
        _track(tracker, clock, count=2, response_time=100.0)
        clock.advance(days=1)
        _track(tracker, clock, count=1, response_time=300.0, success=False)

        usage = reports.build_service_usage(tracker, "gemini")

        assert [t["requests"] for t in usage["trends"]] == [2, 1]
        assert usage["trends"][1]["success_rate"] == 0
        assert usage["summary"] == {
            "total_requests": 3,
            "total_errors": 1,
            "avg_response_time": 200,
        }
        assert usage["quota"]["service"] == "gemini"


class TestQuotaReport:
    def test_warnings_at_eighty_percent(self, repository, clock):
        config = GuardConfig(services={
            "gemini": ServiceQuota(name="Gemini", daily_limit=10),
            "bls": ServiceQuota(name="BLS", daily_limit=10),
            "openalex": ServiceQuota(name="OpenAlex"),
        })
        tracker = UsageTracker(repository, config, clock=clock)
        _track(tracker, clock, count=8)
        _track(tracker, clock, service="bls", count=7)

        report = reports.build_quota_report(tracker)

        assert report["has_warnings"] is True
        assert report["warnings"] == [{
            "service": "gemini",
            "service_name": "Gemini",
            "percent_used": 80,
            "remaining": 2,
        }]
        assert len(report["services"]) == 3

    def test_no_warnings(self, tracker):
        report = reports.build_quota_report(tracker)
        assert report["has_warnings"] is False
        assert report["warnings"] == []


class TestPerformanceReport:
    def test_slow_services(self, tracker, clock):
        _track(tracker, clock, service="bls", response_time=1500.0)
        _track(tracker, clock, service="github", response_time=200.0)

        report = reports.build_performance_report(tracker)

        assert [s["service"] for s in report["by_service"]] == ["bls", "github"]
        assert report["has_slow_services"] is True
        assert report["slow_services"] == [{
            "service": "bls",
            "service_name": "Bureau of Labor Statistics",
            "avg_response_time": 1500,
        }]
        assert report["daily_trends"][0]["requests"] == 2


class TestWeeklyReport:
    def test_empty_week(self, tracker, clock):
        report = reports.build_weekly_report(tracker)

        assert report["summary"]["total_requests"] == 0
        assert report["summary"]["success_rate"] == 0
        assert report["summary"]["services_used"] == 0
        assert report["generated_at"] == clock.now.isoformat()

    def test_week_with_traffic(self, tracker, clock):
        clock.advance(days=-2)
        _track(tracker, clock, count=2)
        clock.advance(days=2)
        _track(tracker, clock, success=False)
        _track(tracker, clock, service="github")
        tracker.repository.insert_alert(APIAlert(
            alert_type="ERROR_SPIKE", service="gemini", message="spike",
            severity="high", timestamp=clock.now,
        ))
        tracker.log_api_error(APIErrorLog(
            service="gemini", endpoint="/v1/test", error_message="HTTP 500",
            timestamp=clock.now,
        ))

        report = reports.build_weekly_report(tracker)

        assert report["summary"]["total_requests"] == 4
        assert report["summary"]["failed_requests"] == 1
        assert report["summary"]["success_rate"] == 75.0
        assert report["summary"]["services_used"] == 2
        assert report["by_service"][0]["service"] == "gemini"
        assert report["by_service"][0]["success_rate"] == 66.67
        assert report["errors_by_service"] == [{"service": "gemini", "count": 1}]
        assert report["alerts"]["total"] == 1
        assert report["alerts"]["by_severity"]["high"] == 1
        assert report["alerts"]["unacknowledged"] == 1
        assert {d["date"] for d in report["daily_trends"]} == {
            (clock.now.date() - timedelta(days=2)).isoformat(),
            clock.now.date().isoformat(),
        }

    def test_traffic_older_than_a_week_is_excluded(self, tracker, clock):
        clock.advance(days=-8)
        _track(tracker, clock)
        clock.advance(days=8)

        assert reports.build_weekly_report(tracker)["summary"]["total_requests"] == 0


class TestListServices:
    def test_list_services(self, tracker):
        services = {s["id"]: s for s in reports.list_services(tracker)}

        assert services["gemini"]["limits"] == {
            "daily": 1500, "monthly": None, "hourly": None, "minute": 15,
        }
        assert services["openalex"]["has_quota"] is False
        assert services["clerk"]["limits"]["monthly"] == 10000
