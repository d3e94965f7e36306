"""
Repository pattern for data access.

Handles persistence of daily usage aggregates, error logs and alerts.
"""

import json
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .db import default_db_path, get_connection
from .models import (
    APIAlert,
    APICall,
    APIErrorLog,
    HourlyStats,
    ServiceUsage,
)

DateLike = Union[date, datetime]


def _day(value: DateLike) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _row_to_usage(row) -> ServiceUsage:
    hourly = {
        hour: HourlyStats(**stats)
        for hour, stats in json.loads(row["hourly_stats"] or "{}").items()
    }
    calls = [APICall.from_dict(c) for c in json.loads(row["recent_calls"] or "[]")]
    return ServiceUsage(
        id=row["id"],
        service=row["service"],
        date=date.fromisoformat(row["date"]),
        total_requests=row["total_requests"],
        successful_requests=row["successful_requests"],
        failed_requests=row["failed_requests"],
        rate_limit_hits=row["rate_limit_hits"],
        quota_used=row["quota_used"],
        quota_limit=row["quota_limit"],
        quota_reset_date=_parse_ts(row["quota_reset_date"]),
        total_response_time=row["total_response_time"],
        min_response_time=row["min_response_time"],
        max_response_time=row["max_response_time"],
        avg_response_time=row["avg_response_time"],
        total_request_size=row["total_request_size"],
        total_response_size=row["total_response_size"],
        recent_calls=calls,
        hourly_stats=hourly,
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_error(row) -> APIErrorLog:
    return APIErrorLog(
        id=row["id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        service=row["service"],
        endpoint=row["endpoint"],
        method=row["method"],
        status_code=row["status_code"],
        error_code=row["error_code"],
        error_message=row["error_message"],
        error_stack=row["error_stack"],
        request_data=_load(row["request_data"]),
        response_data=_load(row["response_data"]),
        user_id=row["user_id"],
        resolved=bool(row["resolved"]),
        resolved_at=_parse_ts(row["resolved_at"]),
        resolved_by=row["resolved_by"],
        notes=row["notes"],
    )


def _row_to_alert(row) -> APIAlert:
    return APIAlert(
        id=row["id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        alert_type=row["alert_type"],
        service=row["service"],
        message=row["message"],
        severity=row["severity"],
        threshold=row["threshold"],
        current_value=row["current_value"],
        acknowledged=bool(row["acknowledged"]),
        acknowledged_at=_parse_ts(row["acknowledged_at"]),
        acknowledged_by=row["acknowledged_by"],
    )


def _where(conditions: List[str]) -> str:
    return (" WHERE " + " AND ".join(conditions)) if conditions else ""


class UsageRepository:
    """Repository for API usage aggregates, error logs and alerts.

    Every method opens its own connection and closes it before returning,
    so one instance can be shared between request handlers.
    """

    def __init__(self, db_path: Optional[str] = None):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path or default_db_path()

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    # -- usage aggregates -------------------------------------------------

    def record_api_call(self, call: APICall) -> ServiceUsage:
        """Fold one call into today's aggregate for its service.

        The read-modify-write runs inside a single immediate transaction.

        Args:
            call: The observed API call

        Returns:
            The updated daily aggregate
        """
        day = call.timestamp.date()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM api_usage WHERE service = ? AND date = ?",
                (call.service, day.isoformat()),
            ).fetchone()

            now = datetime.now()
            if row is None:
                usage = ServiceUsage(service=call.service, date=day, created_at=now)
            else:
                usage = _row_to_usage(row)

            usage.apply_call(call)
            usage.updated_at = now

            values = (
                usage.total_requests,
                usage.successful_requests,
                usage.failed_requests,
                usage.rate_limit_hits,
                usage.quota_used,
                usage.quota_limit,
                _ts(usage.quota_reset_date) if usage.quota_reset_date else None,
                usage.total_response_time,
                usage.min_response_time,
                usage.max_response_time,
                usage.avg_response_time,
                usage.total_request_size,
                usage.total_response_size,
                json.dumps([c.to_dict() for c in usage.recent_calls], default=str),
                json.dumps({
                    hour: {
                        "requests": s.requests,
                        "errors": s.errors,
                        "avg_response_time": s.avg_response_time,
                    }
                    for hour, s in usage.hourly_stats.items()
                }),
                _ts(usage.updated_at),
            )

            if usage.id is None:
                cursor = conn.execute("""
                    INSERT INTO api_usage
                    (total_requests, successful_requests, failed_requests,
                     rate_limit_hits, quota_used, quota_limit, quota_reset_date,
                     total_response_time, min_response_time, max_response_time,
                     avg_response_time, total_request_size, total_response_size,
                     recent_calls, hourly_stats, updated_at,
                     service, date, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, values + (usage.service, day.isoformat(), _ts(usage.created_at)))
                usage.id = cursor.lastrowid
            else:
                conn.execute("""
                    UPDATE api_usage SET
                        total_requests = ?, successful_requests = ?,
                        failed_requests = ?, rate_limit_hits = ?, quota_used = ?,
                        quota_limit = ?, quota_reset_date = ?,
                        total_response_time = ?, min_response_time = ?,
                        max_response_time = ?, avg_response_time = ?,
                        total_request_size = ?, total_response_size = ?,
                        recent_calls = ?, hourly_stats = ?, updated_at = ?
                    WHERE id = ?
                """, values + (usage.id,))
            conn.commit()
            return usage
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_usage(self, service: str, day: DateLike) -> Optional[ServiceUsage]:
        """Get the aggregate for one service on one day, if any."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM api_usage WHERE service = ? AND date = ?",
                (service, _day(day)),
            ).fetchone()
            return _row_to_usage(row) if row else None
        finally:
            conn.close()

    def get_usage_for_day(self, day: DateLike) -> List[ServiceUsage]:
        """Get every service's aggregate for one day."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM api_usage WHERE date = ? ORDER BY service",
                (_day(day),),
            ).fetchall()
            return [_row_to_usage(row) for row in rows]
        finally:
            conn.close()

    def get_usage_range(self, service: str, start: DateLike) -> List[ServiceUsage]:
        """Get a service's daily aggregates from start onwards, oldest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM api_usage WHERE service = ? AND date >= ? ORDER BY date ASC",
                (service, _day(start)),
            ).fetchall()
            return [_row_to_usage(row) for row in rows]
        finally:
            conn.close()

    def get_total_requests_since(self, service: str, start: DateLike) -> int:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT SUM(total_requests) FROM api_usage WHERE service = ? AND date >= ?",
                (service, _day(start)),
            ).fetchone()
            return row[0] or 0
        finally:
            conn.close()

    def get_usage_summary(
        self,
        start: DateLike,
        end: DateLike,
        services: Optional[Iterable[str]] = None
    ) -> List[Dict[str, Any]]:
        """Summarise usage per service for a date range.

        Args:
            start: First day included
            end: Last day included
            services: Optional subset of services

        Returns:
            One dictionary per service, busiest service first
        """
        conditions = ["date >= ?", "date <= ?"]
        params: List[Any] = [_day(start), _day(end)]
        services = list(services or [])
        if services:
            conditions.append(f"service IN ({', '.join('?' for _ in services)})")
            params.extend(services)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(f"""
                SELECT
                    service,
                    SUM(total_requests) AS total_requests,
                    SUM(successful_requests) AS successful_requests,
                    SUM(failed_requests) AS failed_requests,
                    SUM(rate_limit_hits) AS rate_limit_hits,
                    AVG(avg_response_time) AS avg_response_time,
                    MIN(min_response_time) AS min_response_time,
                    MAX(max_response_time) AS max_response_time,
                    SUM(total_request_size) AS total_request_size,
                    SUM(total_response_size) AS total_response_size
                FROM api_usage
                {_where(conditions)}
                GROUP BY service
                ORDER BY total_requests DESC
            """, params).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_daily_trends(
        self,
        days: int = 7,
        service: Optional[str] = None,
        today: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        """Per-day, per-service totals for the last `days` days, oldest first."""
        today = today or date.today()
        conditions = ["date >= ?"]
        params: List[Any] = [(today - timedelta(days=days)).isoformat()]
        if service:
            conditions.append("service = ?")
            params.append(service)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(f"""
                SELECT
                    date,
                    service,
                    SUM(total_requests) AS total_requests,
                    SUM(failed_requests) AS failed_requests,
                    AVG(avg_response_time) AS avg_response_time
                FROM api_usage
                {_where(conditions)}
                GROUP BY date, service
                ORDER BY date ASC, service ASC
            """, params).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_performance_by_service(self, start: DateLike) -> List[Dict[str, Any]]:
        """Response-time statistics per service, slowest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT
                    service,
                    AVG(avg_response_time) AS avg_response_time,
                    MIN(min_response_time) AS min_response_time,
                    MAX(max_response_time) AS max_response_time,
                    SUM(total_requests) AS total_requests
                FROM api_usage
                WHERE date >= ?
                GROUP BY service
                ORDER BY avg_response_time DESC
            """, (_day(start),)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_daily_performance(self, start: DateLike) -> List[Dict[str, Any]]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT
                    date,
                    AVG(avg_response_time) AS avg_response_time,
                    SUM(total_requests) AS total_requests
                FROM api_usage
                WHERE date >= ?
                GROUP BY date
                ORDER BY date ASC
            """, (_day(start),)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    # -- error logs -------------------------------------------------------

    def insert_error_log(self, error: APIErrorLog) -> APIErrorLog:
        """Persist an error log and return it with its id set."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO api_error_log
                (timestamp, service, endpoint, method, status_code, error_code,
                 error_message, error_stack, request_data, response_data,
                 user_id, resolved, resolved_at, resolved_by, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                _ts(error.timestamp),
                error.service,
                error.endpoint,
                error.method,
                error.status_code,
                error.error_code,
                error.error_message,
                error.error_stack,
                _dump(error.request_data),
                _dump(error.response_data),
                error.user_id,
                int(error.resolved),
                _ts(error.resolved_at) if error.resolved_at else None,
                error.resolved_by,
                error.notes,
            ))
            conn.commit()
            error.id = cursor.lastrowid
            return error
        finally:
            conn.close()

    def count_errors_since(self, service: Optional[str], since: datetime) -> int:
        conditions = ["timestamp >= ?"]
        params: List[Any] = [_ts(since)]
        if service:
            conditions.append("service = ?")
            params.append(service)

        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT COUNT(*) FROM api_error_log{_where(conditions)}", params
            ).fetchone()
            return row[0]
        finally:
            conn.close()

    @staticmethod
    def _error_filters(
        service: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        resolved: Optional[bool]
    ) -> Tuple[List[str], List[Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        if service:
            conditions.append("service = ?")
            params.append(service)
        if resolved is not None:
            conditions.append("resolved = ?")
            params.append(int(resolved))
        if start:
            conditions.append("timestamp >= ?")
            params.append(_ts(start))
        if end:
            conditions.append("timestamp <= ?")
            params.append(_ts(end))
        return conditions, params

    def find_error_logs(
        self,
        service: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        resolved: Optional[bool] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[APIErrorLog], int]:
        """Find error logs, newest first, with pagination.

        Returns:
            Tuple of (page of error logs, total matching count)
        """
        conditions, params = self._error_filters(service, start, end, resolved)
        where = _where(conditions)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM api_error_log{where} ORDER BY timestamp DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM api_error_log{where}", params
            ).fetchone()[0]
            return [_row_to_error(row) for row in rows], total
        finally:
            conn.close()

    def count_errors_by_service(
        self,
        service: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        resolved: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        conditions, params = self._error_filters(service, start, end, resolved)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(f"""
                SELECT service, COUNT(*) AS count
                FROM api_error_log
                {_where(conditions)}
                GROUP BY service
                ORDER BY count DESC
            """, params).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def resolve_error(
        self,
        error_id: int,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> Optional[APIErrorLog]:
        """Mark an error log as resolved at a moment, now by default.

        Returns:
            The updated error log, or None if no such id exists
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE api_error_log
                SET resolved = 1, resolved_at = ?, resolved_by = ?, notes = ?
                WHERE id = ?
            """, (_ts(at or datetime.now()), resolved_by, notes, error_id))
            conn.commit()
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM api_error_log WHERE id = ?", (error_id,)
            ).fetchone()
            return _row_to_error(row)
        finally:
            conn.close()

    # -- alerts -----------------------------------------------------------

    def insert_alert(self, alert: APIAlert) -> APIAlert:
        """Persist an alert and return it with its id set."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO api_alert
                (timestamp, alert_type, service, message, severity, threshold,
                 current_value, acknowledged, acknowledged_at, acknowledged_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                _ts(alert.timestamp),
                alert.alert_type,
                alert.service,
                alert.message,
                alert.severity,
                alert.threshold,
                alert.current_value,
                int(alert.acknowledged),
                _ts(alert.acknowledged_at) if alert.acknowledged_at else None,
                alert.acknowledged_by,
            ))
            conn.commit()
            alert.id = cursor.lastrowid
            return alert
        finally:
            conn.close()

    def find_open_alert(
        self,
        service: str,
        alert_type: str,
        since: datetime,
        message_like: Optional[str] = None
    ) -> Optional[APIAlert]:
        """Find an unacknowledged alert of a type raised since a moment.

        message_like narrows the match with an SQL LIKE pattern on the message.
        """
        conditions = ["service = ?", "alert_type = ?", "acknowledged = 0", "timestamp >= ?"]
        params: List[Any] = [service, alert_type, _ts(since)]
        if message_like:
            conditions.append("message LIKE ?")
            params.append(message_like)

        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT * FROM api_alert{_where(conditions)} ORDER BY timestamp DESC LIMIT 1",
                params,
            ).fetchone()
            return _row_to_alert(row) if row else None
        finally:
            conn.close()

    def find_alerts(
        self,
        service: Optional[str] = None,
        alert_type: Optional[str] = None,
        severity: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[APIAlert], int]:
        """Find alerts, newest first, with pagination.

        Returns:
            Tuple of (page of alerts, total matching count)
        """
        conditions: List[str] = []
        params: List[Any] = []
        if service:
            conditions.append("service = ?")
            params.append(service)
        if alert_type:
            conditions.append("alert_type = ?")
            params.append(alert_type)
        if severity:
            conditions.append("severity = ?")
            params.append(severity)
        if acknowledged is not None:
            conditions.append("acknowledged = ?")
            params.append(int(acknowledged))
        if start:
            conditions.append("timestamp >= ?")
            params.append(_ts(start))
        if end:
            conditions.append("timestamp <= ?")
            params.append(_ts(end))

        where = _where(conditions)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM api_alert{where} ORDER BY timestamp DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM api_alert{where}", params
            ).fetchone()[0]
            return [_row_to_alert(row) for row in rows], total
        finally:
            conn.close()

    def acknowledge_alert(
        self,
        alert_id: int,
        acknowledged_by: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> Optional[APIAlert]:
        """Acknowledge an alert at a moment, now by default.

        Returns:
            The updated alert, or None if no such id exists
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE api_alert
                SET acknowledged = 1, acknowledged_at = ?, acknowledged_by = ?
                WHERE id = ?
            """, (_ts(at or datetime.now()), acknowledged_by, alert_id))
            conn.commit()
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM api_alert WHERE id = ?", (alert_id,)
            ).fetchone()
            return _row_to_alert(row)
        finally:
            conn.close()


# Global repository instance
_default_repository: Optional[UsageRepository] = None


def get_repository(db_path: Optional[str] = None) -> UsageRepository:
    """Get the shared repository instance.

    Args:
        db_path: Path to SQLite database file, used on first call only

    Returns:
        An instance of UsageRepository
    """
    global _default_repository
    if _default_repository is None:
        _default_repository = UsageRepository(db_path)
    return _default_repository


def reset_repository() -> None:
    global _default_repository
    _default_repository = None


def initialize_schema(db_path: Optional[str] = None) -> None:
    """Create the usage, error log and alert tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path or default_db_path())
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS api_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                service TEXT NOT NULL,
                date TEXT NOT NULL,
                total_requests INTEGER NOT NULL DEFAULT 0,
                successful_requests INTEGER NOT NULL DEFAULT 0,
                failed_requests INTEGER NOT NULL DEFAULT 0,
                rate_limit_hits INTEGER NOT NULL DEFAULT 0,
                quota_used INTEGER NOT NULL DEFAULT 0,
                quota_limit INTEGER,
                quota_reset_date TEXT,
                total_response_time REAL NOT NULL DEFAULT 0,
                min_response_time REAL,
                max_response_time REAL,
                avg_response_time REAL NOT NULL DEFAULT 0,
                total_request_size INTEGER NOT NULL DEFAULT 0,
                total_response_size INTEGER NOT NULL DEFAULT 0,
                recent_calls TEXT NOT NULL DEFAULT '[]',
                hourly_stats TEXT NOT NULL DEFAULT '{}',
                created_at TEXT,
                updated_at TEXT,
                UNIQUE (service, date)
            );
            CREATE INDEX IF NOT EXISTS idx_api_usage_service_date
                ON api_usage (service, date DESC);
            CREATE INDEX IF NOT EXISTS idx_api_usage_date
                ON api_usage (date DESC);

            CREATE TABLE IF NOT EXISTS api_error_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                service TEXT NOT NULL,
                endpoint TEXT NOT NULL,
                method TEXT,
                status_code INTEGER,
                error_code TEXT,
                error_message TEXT NOT NULL,
                error_stack TEXT,
                request_data TEXT,
                response_data TEXT,
                user_id TEXT,
                resolved INTEGER NOT NULL DEFAULT 0,
                resolved_at TEXT,
                resolved_by TEXT,
                notes TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_api_error_log_timestamp
                ON api_error_log (timestamp);

            CREATE TABLE IF NOT EXISTS api_alert (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                alert_type TEXT NOT NULL,
                service TEXT NOT NULL,
                message TEXT NOT NULL,
                severity TEXT NOT NULL DEFAULT 'medium',
                threshold REAL,
                current_value REAL,
                acknowledged INTEGER NOT NULL DEFAULT 0,
                acknowledged_at TEXT,
                acknowledged_by TEXT
            );
        """)
        conn.commit()
    finally:
        conn.close()
