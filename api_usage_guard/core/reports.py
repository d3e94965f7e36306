"""
Monitoring reports.

Builds the dashboard, quota, performance and weekly report views served by
the API and printed by the CLI. All functions are read-only.
"""

from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from ..config.quotas import display_name
from ..storage.models import AlertSeverity, ServiceUsage
from .errors import UnknownServiceError
from .tracker import UsageTracker

SLOW_SERVICE_MS = 1000
SLOW_STATUS_MS = 2000
QUOTA_WARNING_PERCENT = 80


def _success_rate(successful: int, total: int, digits: int, idle: float) -> float:
    if total <= 0:
        return idle
    return round(successful / total * 100, digits)


def _ms(value: Optional[float]) -> int:
    return int(round(value)) if value else 0


def _totals(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "requests": sum(r["total_requests"] or 0 for r in rows),
        "successful": sum(r["successful_requests"] or 0 for r in rows),
        "failed": sum(r["failed_requests"] or 0 for r in rows),
        "rate_limit_hits": sum(r["rate_limit_hits"] or 0 for r in rows),
    }


def get_service_status(
    today: Optional[ServiceUsage],
    quota_status: Optional[Dict[str, Any]]
) -> str:
    """Traffic-light status for one service based on today's usage."""
    if today is None:
        return "inactive"

    error_rate = 0.0
    if today.total_requests > 0:
        error_rate = today.failed_requests / today.total_requests * 100

    if error_rate > 20:
        return "critical"
    if error_rate > 10:
        return "warning"

    daily = ((quota_status or {}).get("limits") or {}).get("daily")
    if daily and daily["percent_used"] >= 90:
        return "quota-critical"
    if daily and daily["percent_used"] >= QUOTA_WARNING_PERCENT:
        return "quota-warning"

    if today.avg_response_time > SLOW_STATUS_MS:
        return "slow"

    return "healthy"


def quota_statuses(tracker: UsageTracker) -> List[Dict[str, Any]]:
    return [tracker.get_remaining_quota(service) for service in tracker.config.services]


def build_dashboard(tracker: UsageTracker) -> Dict[str, Any]:
    """Overview of today's and this week's traffic for every service."""
    repo = tracker.repository
    now = tracker.now()
    today = now.date()
    week_ago = today - timedelta(days=7)

    today_usage = {u.service: u for u in repo.get_usage_for_day(today)}
    weekly_summary = {s["service"]: s for s in repo.get_usage_summary(week_ago, today)}
    recent_errors = repo.count_errors_since(None, now - timedelta(hours=24))
    active_alerts, _ = repo.find_alerts(acknowledged=False, limit=10)
    statuses = {q["service"]: q for q in quota_statuses(tracker)}

    today_totals = {
        "requests": sum(u.total_requests for u in today_usage.values()),
        "successful": sum(u.successful_requests for u in today_usage.values()),
        "failed": sum(u.failed_requests for u in today_usage.values()),
        "rate_limit_hits": sum(u.rate_limit_hits for u in today_usage.values()),
    }
    weekly_totals = _totals(list(weekly_summary.values()))

    services = []
    for service, quota in tracker.config.services.items():
        today_data = today_usage.get(service)
        weekly_data = weekly_summary.get(service) or {}
        quota_status = statuses.get(service)
        services.append({
            "id": service,
            "name": quota.name,
            "today": {
                "requests": today_data.total_requests if today_data else 0,
                "errors": today_data.failed_requests if today_data else 0,
                "avg_response_time": _ms(today_data.avg_response_time if today_data else 0),
            },
            "weekly": {
                "requests": weekly_data.get("total_requests") or 0,
                "errors": weekly_data.get("failed_requests") or 0,
                "avg_response_time": _ms(weekly_data.get("avg_response_time")),
            },
            "quota": quota_status.get("limits") if quota_status else None,
            "status": get_service_status(today_data, quota_status),
        })

    return {
        "overview": {
            "today": {
                **today_totals,
                "success_rate": _success_rate(
                    today_totals["successful"], today_totals["requests"], 1, 100
                ),
            },
            "weekly": {
                **weekly_totals,
                "success_rate": _success_rate(
                    weekly_totals["successful"], weekly_totals["requests"], 1, 100
                ),
            },
            "recent_error_count": recent_errors,
            "active_alert_count": len(active_alerts),
        },
        "services": services,
        "alerts": [alert.to_dict() for alert in active_alerts],
        "quota_statuses": [q for q in statuses.values() if q["has_quota"]],
    }


def build_service_usage(tracker: UsageTracker, service: str, days: int = 7) -> Dict[str, Any]:
    """Daily trends, quota and recent errors for one service.

    Raises:
        UnknownServiceError: If the service has no quota configuration
    """
    quota = tracker.config.get_quota(service)
    if quota is None:
        raise UnknownServiceError(service)

    repo = tracker.repository
    start_day = tracker.now().date() - timedelta(days=days)
    usage_data = repo.get_usage_range(service, start_day)
    recent_errors, _ = repo.find_error_logs(
        service=service, start=datetime.combine(start_day, time.min), limit=50
    )

    trends = [{
        "date": day.date.isoformat(),
        "requests": day.total_requests,
        "errors": day.failed_requests,
        "avg_response_time": day.avg_response_time,
        "success_rate": _success_rate(day.successful_requests, day.total_requests, 1, 100),
    } for day in usage_data]

    avg_response = 0
    if usage_data:
        avg_response = _ms(sum(d.avg_response_time for d in usage_data) / len(usage_data))

    return {
        "service": service,
        "service_name": quota.name,
        "quota": tracker.get_remaining_quota(service),
        "trends": trends,
        "recent_errors": [{
            "id": e.id,
            "timestamp": e.timestamp.isoformat(),
            "endpoint": e.endpoint,
            "status_code": e.status_code,
            "error_message": e.error_message,
            "resolved": e.resolved,
        } for e in recent_errors],
        "summary": {
            "total_requests": sum(d.total_requests for d in usage_data),
            "total_errors": sum(d.failed_requests for d in usage_data),
            "avg_response_time": avg_response,
        },
    }


def build_quota_report(tracker: UsageTracker) -> Dict[str, Any]:
    """Quota status for all services plus those near their daily limit."""
    statuses = quota_statuses(tracker)
    warnings = [{
        "service": q["service"],
        "service_name": q["service_name"],
        "percent_used": q["limits"]["daily"]["percent_used"],
        "remaining": q["limits"]["daily"]["remaining"],
    } for q in statuses
        if q["has_quota"] and q["limits"].get("daily", {}).get("percent_used", 0) >= QUOTA_WARNING_PERCENT]

    return {
        "services": statuses,
        "warnings": warnings,
        "has_warnings": bool(warnings),
    }


def build_performance_report(tracker: UsageTracker, days: int = 7) -> Dict[str, Any]:
    """Response-time statistics per service and per day."""
    repo = tracker.repository
    services = tracker.config.services
    start_day = tracker.now().date() - timedelta(days=days)
    by_service = repo.get_performance_by_service(start_day)
    daily = repo.get_daily_performance(start_day)

    slow_services = [{
        "service": s["service"],
        "service_name": display_name(s["service"], services),
        "avg_response_time": _ms(s["avg_response_time"]),
    } for s in by_service if (s["avg_response_time"] or 0) > SLOW_SERVICE_MS]

    return {
        "by_service": [{
            "service": s["service"],
            "service_name": display_name(s["service"], services),
            "avg_response_time": _ms(s["avg_response_time"]),
            "min_response_time": _ms(s["min_response_time"]),
            "max_response_time": _ms(s["max_response_time"]),
            "total_requests": s["total_requests"],
        } for s in by_service],
        "daily_trends": [{
            "date": d["date"],
            "avg_response_time": _ms(d["avg_response_time"]),
            "requests": d["total_requests"],
        } for d in daily],
        "slow_services": slow_services,
        "has_slow_services": bool(slow_services),
    }


def build_weekly_report(tracker: UsageTracker) -> Dict[str, Any]:
    """Seven-day usage, error and alert report."""
    repo = tracker.repository
    services = tracker.config.services
    now = tracker.now()
    end = datetime.combine(now.date(), time.max)
    start = datetime.combine(now.date() - timedelta(days=7), time.min)

    usage_summary = repo.get_usage_summary(start, end)
    error_counts = repo.count_errors_by_service(start=start, end=end)
    alerts, total_alerts = repo.find_alerts(start=start, end=end, limit=-1)
    daily_trends = repo.get_daily_trends(7, today=now.date())

    totals = {
        "total_requests": sum(s["total_requests"] or 0 for s in usage_summary),
        "successful_requests": sum(s["successful_requests"] or 0 for s in usage_summary),
        "failed_requests": sum(s["failed_requests"] or 0 for s in usage_summary),
        "rate_limit_hits": sum(s["rate_limit_hits"] or 0 for s in usage_summary),
    }

    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "summary": {
            **totals,
            "success_rate": _success_rate(
                totals["successful_requests"], totals["total_requests"], 2, 0
            ),
            "services_used": len(usage_summary),
        },
        "by_service": [{
            **s,
            "service_name": display_name(s["service"], services),
            "success_rate": _success_rate(
                s["successful_requests"] or 0, s["total_requests"] or 0, 2, 0
            ),
        } for s in usage_summary],
        "errors_by_service": error_counts,
        "alerts": {
            "total": total_alerts,
            "by_severity": {
                severity.value: sum(1 for a in alerts if a.severity == severity.value)
                for severity in (AlertSeverity.CRITICAL, AlertSeverity.HIGH,
                                 AlertSeverity.MEDIUM, AlertSeverity.LOW)
            },
            "unacknowledged": sum(1 for a in alerts if not a.acknowledged),
        },
        "daily_trends": daily_trends,
        "generated_at": now.isoformat(),
    }


def list_services(tracker: UsageTracker) -> List[Dict[str, Any]]:
    """Configured services with their limits."""
    return [{
        "id": service,
        "name": quota.name,
        "has_quota": quota.has_limits,
        "limits": {
            "daily": quota.daily_limit,
            "monthly": quota.monthly_limit,
            "hourly": quota.hourly_limit,
            "minute": quota.minute_limit,
        },
        "warning_threshold": quota.warning_threshold,
    } for service, quota in tracker.config.services.items()]
