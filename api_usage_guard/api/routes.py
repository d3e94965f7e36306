"""API monitoring routes."""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core import reports
from ..core.errors import UnknownServiceError
from ..core.tracker import UsageTracker
from ..storage.models import AlertSeverity, AlertType

logger = logging.getLogger(__name__)


class ResolveErrorRequest(BaseModel):
    """Request body for resolving an error log."""

    notes: Optional[str] = None
    resolved_by: Optional[str] = None


class AcknowledgeAlertRequest(BaseModel):
    """Request body for acknowledging an alert."""

    acknowledged_by: Optional[str] = None


def _ok(data: Any, message: Optional[str] = None) -> dict:
    return {"success": True, "message": message, "data": data}


def _fail(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "data": None, **extra},
    )


def _server_error(message: str, error: Exception) -> JSONResponse:
    logger.exception(message)
    return _fail(500, message, error=str(error))


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid {name} format, expected ISO 8601")


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": -(-total // limit),
    }


def create_monitoring_router(tracker: UsageTracker) -> APIRouter:
    """Create the API monitoring router bound to a tracker."""
    router = APIRouter(prefix="/api/api-monitoring", tags=["api-monitoring"])
    repo = tracker.repository

    @router.get("/dashboard")
    def get_dashboard():
        """Overview of all services."""
        try:
            return _ok(reports.build_dashboard(tracker), "Dashboard data retrieved successfully")
        except Exception as e:
            return _server_error("Failed to fetch dashboard data", e)

    @router.get("/usage/{service}")
    def get_service_usage(service: str, days: int = Query(7, ge=1, le=365)):
        """Usage trends for one service."""
        try:
            return _ok(reports.build_service_usage(tracker, service, days))
        except UnknownServiceError:
            return _fail(
                400, "Invalid service name",
                valid_services=list(tracker.config.services),
            )
        except Exception as e:
            return _server_error("Failed to fetch service usage", e)

    @router.get("/errors")
    def get_error_logs(
        service: Optional[str] = None,
        start_date: Optional[str] = Query(None, description="ISO timestamp filter"),
        end_date: Optional[str] = Query(None, description="ISO timestamp filter"),
        resolved: Optional[bool] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=500),
    ):
        """Error logs with filtering and pagination."""
        try:
            start = _parse_date(start_date, "start_date")
            end = _parse_date(end_date, "end_date")
        except ValueError as e:
            return _fail(400, str(e))

        try:
            errors, total = repo.find_error_logs(
                service=service, start=start, end=end, resolved=resolved,
                page=page, limit=limit,
            )
            by_service = repo.count_errors_by_service(
                service=service, start=start, end=end, resolved=resolved,
            )
            return _ok({
                "errors": [e.to_dict() for e in errors],
                "pagination": _pagination(page, limit, total),
                "summary": {"total": total, "by_service": by_service},
            })
        except Exception as e:
            return _server_error("Failed to fetch error logs", e)

    @router.put("/errors/{error_id}/resolve")
    def resolve_error(error_id: int, body: Optional[ResolveErrorRequest] = None):
        """Mark an error log as resolved."""
        body = body or ResolveErrorRequest()
        try:
            error = repo.resolve_error(
                error_id, resolved_by=body.resolved_by, notes=body.notes, at=tracker.now()
            )
        except Exception as e:
            return _server_error("Failed to resolve error", e)
        if error is None:
            return _fail(404, "Error log not found")
        return _ok(error.to_dict(), "Error marked as resolved")

    @router.get("/alerts")
    def get_alerts(
        service: Optional[str] = None,
        alert_type: Optional[AlertType] = None,
        severity: Optional[AlertSeverity] = None,
        acknowledged: Optional[bool] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=500),
    ):
        """Alerts with filtering and pagination."""
        try:
            alerts, total = repo.find_alerts(
                service=service,
                alert_type=alert_type.value if alert_type else None,
                severity=severity.value if severity else None,
                acknowledged=acknowledged,
                page=page,
                limit=limit,
            )
            return _ok({
                "alerts": [a.to_dict() for a in alerts],
                "pagination": _pagination(page, limit, total),
            })
        except Exception as e:
            return _server_error("Failed to fetch alerts", e)

    @router.put("/alerts/{alert_id}/acknowledge")
    def acknowledge_alert(alert_id: int, body: Optional[AcknowledgeAlertRequest] = None):
        """Acknowledge an alert."""
        body = body or AcknowledgeAlertRequest()
        try:
            alert = repo.acknowledge_alert(
                alert_id, acknowledged_by=body.acknowledged_by, at=tracker.now()
            )
        except Exception as e:
            return _server_error("Failed to acknowledge alert", e)
        if alert is None:
            return _fail(404, "Alert not found")
        return _ok(alert.to_dict(), "Alert acknowledged")

    @router.get("/quotas")
    def get_quota_status():
        try:
            return _ok(reports.build_quota_report(tracker))
        except Exception as e:
            return _server_error("Failed to fetch quota status", e)

    @router.get("/performance")
    def get_performance_metrics(days: int = Query(7, ge=1, le=365)):
        try:
            return _ok(reports.build_performance_report(tracker, days))
        except Exception as e:
            return _server_error("Failed to fetch performance metrics", e)

    @router.get("/reports/weekly")
    def get_weekly_report():
        try:
            return _ok(reports.build_weekly_report(tracker))
        except Exception as e:
            return _server_error("Failed to generate weekly report", e)

    @router.get("/services")
    def get_services():
        return _ok(reports.list_services(tracker))

    return router
