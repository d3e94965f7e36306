"""
Unit tests for the in-memory rate limiter.
"""

import threading

from api_usage_guard.config.quotas import DEFAULT_SERVICE_QUOTAS, ServiceQuota
from api_usage_guard.core.rate_limiter import RateLimiter

START = 1_800_000_000.0  # on a minute boundary


class Clock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestWindows:
    """Test counter windows and resets."""

    def setup_method(self):
        self.clock = Clock()
        self.limiter = RateLimiter(clock=self.clock)

    def test_first_call_counts_once_in_every_window(self):
        state = self.limiter.record("gemini")
        assert (state.minute_count, state.hour_count, state.day_count) == (1, 1, 1)

    def test_minute_resets_on_next_wall_clock_minute(self):
        self.limiter.record("gemini")
        self.clock.now = START + 59
        assert self.limiter.record("gemini").minute_count == 2

        self.clock.now = START + 61
        state = self.limiter.record("gemini")
        assert state.minute_count == 1
        assert state.hour_count == 3

    def test_hour_resets_after_an_hour(self):
        self.limiter.record("github")
        self.clock.now = START + 3599
        assert self.limiter.record("github").hour_count == 2

        self.clock.now = START + 3600
        assert self.limiter.record("github").hour_count == 1

    def test_hour_counts_accumulate_in_later_hours(self):
        self.limiter.record("github")
        self.clock.now = START + 3700
        self.limiter.record("github")
        self.clock.now = START + 3800
        self.limiter.record("github")
        self.clock.now = START + 3900

        assert self.limiter.record("github").hour_count == 3
        assert self.limiter.snapshot("github").day_count == 4

    def test_day_resets_after_a_day(self):
        self.limiter.record("bls")
        self.clock.now = START + 24 * 3600
        assert self.limiter.record("bls").day_count == 1

    def test_snapshot_rolls_elapsed_windows(self):
        self.limiter.record("gemini")
        self.clock.now = START + 120
        state = self.limiter.snapshot("gemini")
        assert state.minute_count == 0
        assert state.hour_count == 1

    def test_snapshot_of_unknown_service(self):
        assert self.limiter.snapshot("gemini") is None

    def test_record_returns_a_copy(self):
        state = self.limiter.record("gemini")
        state.minute_count = 99
        assert self.limiter.snapshot("gemini").minute_count == 1

    def test_reset(self):
        self.limiter.record("gemini")
        self.limiter.record("github")

        self.limiter.reset("gemini")
        assert self.limiter.snapshot("gemini") is None
        assert self.limiter.snapshot("github") is not None

        self.limiter.reset()
        assert self.limiter.snapshot("github") is None

    def test_concurrent_records_are_not_lost(self):
        def worker():
            for _ in range(200):
                self.limiter.record("gemini")

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert self.limiter.snapshot("gemini").minute_count == 1000


class TestCheck:
    """Test rate limit checks against quotas."""

    def setup_method(self):
        self.clock = Clock()
        self.limiter = RateLimiter(clock=self.clock)

    def test_no_quota_is_always_allowed(self):
        check = self.limiter.check("other", None)
        assert check.allowed is True
        assert check.remaining is None

    def test_no_calls_yet_reports_daily_limit(self):
        check = self.limiter.check("gemini", DEFAULT_SERVICE_QUOTAS["gemini"])
        assert check.allowed is True
        assert check.remaining == 1500

    def test_no_calls_yet_falls_back_to_minute_limit(self):
        check = self.limiter.check("eventbrite", DEFAULT_SERVICE_QUOTAS["eventbrite"])
        assert check.remaining == 500

    def test_quota_without_windows(self):
        self.limiter.record("openalex")
        check = self.limiter.check("openalex", DEFAULT_SERVICE_QUOTAS["openalex"])
        assert check.allowed is True
        assert check.remaining is None
        assert check.warning_threshold == 0.9

    def test_most_restrictive_window_wins(self):
        quota = ServiceQuota(name="Test", daily_limit=100, minute_limit=5)
        for _ in range(3):
            self.limiter.record("gemini")

        check = self.limiter.check("gemini", quota)

        assert check.allowed is True
        assert check.remaining == 2
        assert {c.type for c in check.limits} == {"minute", "day"}

    def test_exhausted_window_is_refused(self):
        quota = ServiceQuota(name="Test", daily_limit=100, minute_limit=2)
        self.limiter.record("gemini")
        self.limiter.record("gemini")

        check = self.limiter.check("gemini", quota)

        assert check.allowed is False
        assert check.remaining == 0
        minute = [c for c in check.limits if c.type == "minute"][0]
        assert minute.exceeded is True

    def test_exhausted_minute_recovers_next_minute(self):
        quota = ServiceQuota(name="Test", minute_limit=1)
        self.limiter.record("gemini")
        assert not self.limiter.check("gemini", quota).allowed

        self.clock.now = START + 60
        assert self.limiter.check("gemini", quota).allowed

    def test_check_to_dict(self):
        quota = ServiceQuota(name="Test", minute_limit=2)
        self.limiter.record("gemini")

        data = self.limiter.check("gemini", quota).to_dict()

        assert data["allowed"] is True
        assert data["limits"] == [
            {"type": "minute", "remaining": 1, "limit": 2, "exceeded": False}
        ]
