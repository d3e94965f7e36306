"""
Exceptions raised by API Usage Guard.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .rate_limiter import RateLimitCheck


class APIUsageGuardError(Exception):
    """Base class for errors raised by this package."""


class RateLimitExceeded(APIUsageGuardError):
    """Raised when a call is refused because a quota window is exhausted."""
    def __init__(self, message: str, service: str, check: Optional["RateLimitCheck"] = None):
        super().__init__(message)
        self.service = service
        self.check = check


class UnknownServiceError(APIUsageGuardError, ValueError):
    """Raised when a service name has no quota configuration."""
    def __init__(self, service: str):
        super().__init__(f"Invalid service name: {service}")
        self.service = service
