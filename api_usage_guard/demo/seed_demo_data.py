# api_usage_guard/demo/seed_demo_data.py

from datetime import timedelta

from api_usage_guard.core.tracker import UsageTracker, get_tracker
from api_usage_guard.storage.models import APICall, APIErrorLog

DEMO_CALLS = [
    # service, endpoint, response_time_ms, status_code
    ("gemini", "chat/completions", 850, 200),
    ("gemini", "chat/completions", 1320, 200),
    ("gemini", "chat/completions", 400, 429),
    ("eventbrite", "/v3/events/search/", 620, 200),
    ("eventbrite", "/v3/events/search/", 3100, 503),
    ("github", "/users/octocat/repos", 210, 200),
    ("bls", "/publicAPI/v2/timeseries/data/", 1800, 200),
    ("geocoding", "/search", 95, 200),
]


def seed_demo_data(tracker: UsageTracker, days: int = 3) -> int:
    """Insert a few days of demo traffic and errors. Returns calls recorded."""
    tracker.repository.initialize()
    now = tracker.now()
    recorded = 0

    for day_offset in range(days, -1, -1):
        timestamp = now - timedelta(days=day_offset)
        for service, endpoint, response_time, status_code in DEMO_CALLS:
            success = status_code < 400
            call = APICall(
                service=service,
                endpoint=endpoint,
                method="POST" if service == "gemini" else "GET",
                response_time=response_time,
                status_code=status_code,
                success=success,
                error_message=None if success else f"HTTP {status_code}",
                timestamp=timestamp,
            )
            tracker.track_api_call(call)
            recorded += 1
            if not success:
                tracker.log_api_error(APIErrorLog(
                    service=service,
                    endpoint=endpoint,
                    method=call.method,
                    status_code=status_code,
                    error_message=f"HTTP {status_code}",
                    timestamp=timestamp,
                ))
                if status_code == 429:
                    tracker.record_rate_limit_response(service, 0)

    return recorded


if __name__ == "__main__":
    count = seed_demo_data(get_tracker())
    print(f"Demo usage data inserted ({count} calls)")
