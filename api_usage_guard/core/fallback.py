"""
Retry and fallback handling for third-party calls.

Wraps a call with a rate limit check, exponential-backoff retries and an
optional fallback data source.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, TypeVar

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config.quotas import DEFAULT_SERVICE_QUOTAS, ServiceQuota, display_name
from .errors import RateLimitExceeded
from .tracker import UsageTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_CODES = {"ECONNABORTED", "ETIMEDOUT"}
NETWORK_CODES = {"ENOTFOUND", "ECONNREFUSED"}


def status_code_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by an exception, if any.

    Understands httpx.HTTPStatusError (via .response) and SDK errors that
    expose .status_code directly.
    """
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException) -> bool:
    """Client errors are final, except 429 Too Many Requests."""
    status = status_code_of(error)
    if status is not None and 400 <= status < 500 and status != 429:
        return False
    return True


def with_fallback(
    tracker: UsageTracker,
    primary_call: Callable[[], T],
    fallback_call: Optional[Callable[[], T]] = None,
    service: str = "unknown",
    max_retries: int = 3,
    retry_delay: float = 1.0,
    fallback_message: str = "Service temporarily unavailable",
    sleep: Callable[[float], Any] = time.sleep
) -> T:
    """Call a third-party API with retries and an optional fallback.

    Waits retry_delay * 2 ** (attempt - 1) seconds between attempts.

    Args:
        tracker: Tracker holding the service's rate limit state
        primary_call: The call to make
        fallback_call: Alternative source used when the primary is
            rate limited or keeps failing
        service: Service key for rate limit lookup
        max_retries: Maximum attempts of the primary call
        retry_delay: Base delay in seconds
        fallback_message: Appended to the rate limit error message
        sleep: Sleep function used between attempts

    Returns:
        Result of the primary call, or of the fallback

    Raises:
        RateLimitExceeded: If rate limited and no fallback is given
        Exception: The primary's last error when no fallback succeeds
    """
    check = tracker.check_rate_limit(service)
    if not check.allowed:
        if fallback_call is not None:
            logger.warning("Rate limit reached for %s, using fallback", service)
            return fallback_call()
        raise RateLimitExceeded(
            f"Rate limit exceeded for {service}. {fallback_message}", service, check
        )

    retryer = Retrying(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=retry_delay, min=0),
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        reraise=True,
    )

    try:
        return retryer(primary_call)
    except Exception as primary_error:
        if fallback_call is None:
            raise
        logger.warning("Primary call failed for %s, using fallback", service)
        try:
            return fallback_call()
        except Exception as fallback_error:
            logger.error("Fallback also failed for %s: %s", service, fallback_error)
        raise primary_error


def get_user_friendly_message(
    service: str,
    error: BaseException,
    quotas: Dict[str, ServiceQuota] = DEFAULT_SERVICE_QUOTAS
) -> str:
    """User-facing explanation of a failed third-party call."""
    name = display_name(service, quotas)
    messages = {
        429: f"We've reached our limit for {name} requests. Please try again in a few minutes.",
        503: f"{name} is temporarily unavailable. We're using cached data where possible.",
        500: f"There was a problem connecting to {name}. Please try again later.",
    }

    code = getattr(error, "code", None)
    if code in TIMEOUT_CODES or isinstance(error, httpx.TimeoutException):
        return f"The request to {name} took too long. Please try again."

    if code in NETWORK_CODES or isinstance(error, httpx.ConnectError):
        return f"Unable to connect to {name}. Please check your connection."

    return messages.get(
        status_code_of(error),
        f"There was an issue with {name}. Please try again later.",
    )
