"""
Service quota definitions.

Built-in quota ceilings for the third-party services the application calls.
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional


def percent(used: float, limit: float) -> int:
    """Percentage rounded half up."""
    return int(used * 100 / limit + 0.5)


@dataclass(frozen=True)
class ServiceQuota:
    """Configured ceilings for one third-party service.

    A limit of None means the window is not enforced.
    """
    name: str
    daily_limit: Optional[int] = None
    hourly_limit: Optional[int] = None
    minute_limit: Optional[int] = None
    monthly_limit: Optional[int] = None
    authenticated_hourly_limit: Optional[int] = None
    warning_threshold: float = 0.8

    def __post_init__(self):
        """Validate quota values."""
        if not self.name:
            raise ValueError("name is required")
        for field_name in ("daily_limit", "hourly_limit", "minute_limit",
                           "monthly_limit", "authenticated_hourly_limit"):
            value = getattr(self, field_name)
            if value is not None and value <= 0:
                raise ValueError(f"{field_name} must be > 0")
        if not 0 < self.warning_threshold <= 1:
            raise ValueError("warning_threshold must be in (0, 1]")

    @property
    def has_limits(self) -> bool:
        return any((self.daily_limit, self.monthly_limit,
                    self.hourly_limit, self.minute_limit))

    def with_overrides(self, **overrides) -> "ServiceQuota":
        return replace(self, **overrides)


DEFAULT_SERVICE_QUOTAS: Dict[str, ServiceQuota] = {
    "gemini": ServiceQuota(
        name="Google Gemini AI",
        daily_limit=1500,  # free tier
        minute_limit=15,
        warning_threshold=0.8,
    ),
    "eventbrite": ServiceQuota(
        name="Eventbrite API",
        minute_limit=500,
        hourly_limit=2000,
        warning_threshold=0.8,
    ),
    "bls": ServiceQuota(
        name="Bureau of Labor Statistics",
        daily_limit=500,
        warning_threshold=0.8,
    ),
    "github": ServiceQuota(
        name="GitHub API",
        hourly_limit=60,  # unauthenticated
        authenticated_hourly_limit=5000,
        warning_threshold=0.8,
    ),
    "openalex": ServiceQuota(name="OpenAlex API", warning_threshold=0.9),
    "wikidata": ServiceQuota(name="Wikidata Query Service", warning_threshold=0.9),
    "wikipedia": ServiceQuota(name="Wikipedia API", warning_threshold=0.9),
    "clerk": ServiceQuota(
        name="Clerk Authentication",
        monthly_limit=10000,  # free tier MAU
        warning_threshold=0.8,
    ),
    "geocoding": ServiceQuota(
        name="Geocoding Service",
        daily_limit=2500,
        warning_threshold=0.8,
    ),
}


def display_name(service: str, quotas: Dict[str, ServiceQuota]) -> str:
    """Human-readable service name, falling back to the service key."""
    quota = quotas.get(service)
    return quota.name if quota else service
