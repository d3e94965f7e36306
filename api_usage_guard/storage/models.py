"""
Data models for storage layer.

Defines usage, error log and alert records for third-party API monitoring.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


RECENT_CALLS_LIMIT = 100


class Service(Enum):
    """Third-party services whose calls are tracked."""
    GEMINI = "gemini"
    EVENTBRITE = "eventbrite"
    BLS = "bls"
    OPENALEX = "openalex"
    WIKIDATA = "wikidata"
    WIKIPEDIA = "wikipedia"
    GITHUB = "github"
    CLERK = "clerk"
    GEOCODING = "geocoding"
    OTHER = "other"


class HTTPMethod(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class AlertType(Enum):
    """Kinds of operator alerts."""
    RATE_LIMIT_WARNING = "RATE_LIMIT_WARNING"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ERROR_SPIKE = "ERROR_SPIKE"
    SERVICE_DOWN = "SERVICE_DOWN"
    SLOW_RESPONSE = "SLOW_RESPONSE"
    QUOTA_WARNING = "QUOTA_WARNING"


class AlertSeverity(Enum):
    """Severity levels for alerts."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _validate_enum(value: str, enum_cls, field_name: str) -> None:
    valid = [member.value for member in enum_cls]
    if value not in valid:
        raise ValueError(f"{field_name} must be one of: {valid}")


@dataclass(frozen=True)
class APICall:
    """Single observation of an outbound API call.

    Response time is in milliseconds, sizes in bytes.
    """
    service: str
    endpoint: str
    response_time: float
    success: bool
    method: str = "GET"
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    request_size: int = 0
    response_size: int = 0
    user_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate schema-level constraints."""
        if not self.service:
            raise ValueError("service is required")
        if not self.endpoint:
            raise ValueError("endpoint is required")
        if self.response_time is None:
            raise ValueError("response_time is required")
        if self.response_time < 0:
            raise ValueError("response_time cannot be negative")
        _validate_enum(self.method, HTTPMethod, "method")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "service": self.service,
            "endpoint": self.endpoint,
            "method": self.method,
            "response_time": self.response_time,
            "status_code": self.status_code,
            "success": self.success,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "request_size": self.request_size,
            "response_size": self.response_size,
            "user_id": self.user_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "APICall":
        values = dict(data)
        values["timestamp"] = datetime.fromisoformat(values["timestamp"])
        return cls(**values)


@dataclass
class HourlyStats:
    """Request, error and latency figures for one hour of the day."""
    requests: int = 0
    errors: int = 0
    avg_response_time: float = 0.0

    def add(self, response_time: float, success: bool) -> None:
        new_requests = self.requests + 1
        self.avg_response_time = (
            (self.avg_response_time * self.requests) + response_time
        ) / new_requests
        self.requests = new_requests
        if not success:
            self.errors += 1


@dataclass
class ServiceUsage:
    """Usage aggregate for one service on one calendar day.

    Rows are updated in place as calls are recorded. Only the last
    RECENT_CALLS_LIMIT calls are retained in recent_calls.
    """
    service: str
    date: date
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limit_hits: int = 0
    quota_used: int = 0
    quota_limit: Optional[int] = None
    quota_reset_date: Optional[datetime] = None
    total_response_time: float = 0.0
    min_response_time: Optional[float] = None
    max_response_time: Optional[float] = None
    avg_response_time: float = 0.0
    total_request_size: int = 0
    total_response_size: int = 0
    recent_calls: List[APICall] = field(default_factory=list)
    hourly_stats: Dict[str, HourlyStats] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        _validate_enum(self.service, Service, "service")
        if len(self.recent_calls) > RECENT_CALLS_LIMIT:
            raise ValueError(f"Recent calls limited to {RECENT_CALLS_LIMIT} entries")

    def apply_call(self, call: APICall) -> None:
        """Fold a single call into the aggregate counters."""
        self.total_requests += 1
        if call.success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1

        self.total_response_time += call.response_time
        self.avg_response_time = self.total_response_time / self.total_requests
        if self.min_response_time is None or call.response_time < self.min_response_time:
            self.min_response_time = call.response_time
        if self.max_response_time is None or call.response_time > self.max_response_time:
            self.max_response_time = call.response_time

        self.total_request_size += call.request_size
        self.total_response_size += call.response_size

        hour = str(call.timestamp.hour)
        stats = self.hourly_stats.get(hour) or HourlyStats()
        stats.add(call.response_time, call.success)
        self.hourly_stats[hour] = stats

        self.recent_calls.append(call)
        if len(self.recent_calls) > RECENT_CALLS_LIMIT:
            self.recent_calls = self.recent_calls[-RECENT_CALLS_LIMIT:]

        if call.status_code == 429:
            self.rate_limit_hits += 1

    def to_dict(self, include_calls: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "service": self.service,
            "date": self.date.isoformat(),
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rate_limit_hits": self.rate_limit_hits,
            "quota_used": self.quota_used,
            "quota_limit": self.quota_limit,
            "total_response_time": self.total_response_time,
            "min_response_time": self.min_response_time,
            "max_response_time": self.max_response_time,
            "avg_response_time": self.avg_response_time,
            "total_request_size": self.total_request_size,
            "total_response_size": self.total_response_size,
            "hourly_stats": {
                hour: {
                    "requests": stats.requests,
                    "errors": stats.errors,
                    "avg_response_time": stats.avg_response_time,
                }
                for hour, stats in self.hourly_stats.items()
            },
        }
        if include_calls:
            data["recent_calls"] = [call.to_dict() for call in self.recent_calls]
        return data


@dataclass
class APIErrorLog:
    """Detailed record of a failed third-party call."""
    service: str
    endpoint: str
    error_message: str
    method: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    error_stack: Optional[str] = None
    request_data: Any = None
    response_data: Any = None
    user_id: Optional[str] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    def __post_init__(self):
        if not self.service:
            raise ValueError("service is required")
        if not self.endpoint:
            raise ValueError("endpoint is required")
        if not self.error_message:
            raise ValueError("error_message is required")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "service": self.service,
            "endpoint": self.endpoint,
            "method": self.method,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "error_stack": self.error_stack,
            "request_data": self.request_data,
            "response_data": self.response_data,
            "user_id": self.user_id,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "notes": self.notes,
        }


@dataclass
class APIAlert:
    """Operator-facing alert raised when a threshold is crossed."""
    alert_type: str
    service: str
    message: str
    severity: str = AlertSeverity.MEDIUM.value
    threshold: Optional[float] = None
    current_value: Optional[float] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    def __post_init__(self):
        _validate_enum(self.alert_type, AlertType, "alert_type")
        _validate_enum(self.severity, AlertSeverity, "severity")
        if not self.service:
            raise ValueError("service is required")
        if not self.message:
            raise ValueError("message is required")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "alert_type": self.alert_type,
            "service": self.service,
            "message": self.message,
            "severity": self.severity,
            "threshold": self.threshold,
            "current_value": self.current_value,
            "acknowledged": self.acknowledged,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
        }
