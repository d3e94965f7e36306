"""FastAPI application setup."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..core.tracker import UsageTracker, get_tracker
from .routes import create_monitoring_router


def create_fastapi_app(tracker: Optional[UsageTracker] = None) -> FastAPI:
    """Create and configure the monitoring API.

    Args:
        tracker: Tracker to serve (defaults to the shared tracker)
    """
    tracker = tracker or get_tracker()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tracker.repository.initialize()
        yield

    fastapi_app = FastAPI(
        title="API Usage Guard",
        description="Usage, quota and alert monitoring for third-party APIs",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.include_router(create_monitoring_router(tracker))
    return fastapi_app
