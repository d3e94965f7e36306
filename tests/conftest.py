"""
Shared fixtures: temporary database, fixed clock and tracker.
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta

import pytest

from api_usage_guard.config.loader import GuardConfig
from api_usage_guard.core.tracker import UsageTracker
from api_usage_guard.storage.repository import UsageRepository


class FakeClock:
    """Settable local time source."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db_path():
    temp_dir = tempfile.mkdtemp()
    yield os.path.join(temp_dir, "test.db")
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def repository(db_path):
    repo = UsageRepository(db_path)
    repo.initialize()
    return repo


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 14, 30, 0))


@pytest.fixture
def tracker(repository, clock):
    return UsageTracker(repository, GuardConfig(), clock=clock)
