"""
Tracked HTTP client.

httpx client wrapper that records every outbound call to a third-party
service. Responses and errors are returned or raised unchanged.
"""

import time
import traceback
from typing import Any, Optional

import httpx

from ..core.tracker import UsageTracker, get_tracker
from ..storage.models import APICall, APIErrorLog, HTTPMethod, Service

_SEND_KWARGS = ("auth", "follow_redirects")
_METHODS = {method.value for method in HTTPMethod}
_SERVICES = {service.value for service in Service}


def _remaining_header(response: httpx.Response) -> float:
    try:
        return float(response.headers.get("x-ratelimit-remaining", 0))
    except ValueError:
        return 0


def _request_size(request: httpx.Request) -> int:
    try:
        return len(request.content)
    except httpx.RequestNotRead:
        return 0


def _response_data(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:1000]


class TrackedHTTPClient:
    """HTTP client bound to one third-party service.

    Any status >= 400 is raised as httpx.HTTPStatusError after it has been
    tracked and logged.
    """

    def __init__(
        self,
        service: str,
        tracker: Optional[UsageTracker] = None,
        user_id: Optional[str] = None,
        **client_kwargs: Any
    ):
        """Initialize tracked client.

        Args:
            service: Service key the calls are counted against
            tracker: Usage tracker (defaults to the shared tracker)
            user_id: Default user the calls are made for
            **client_kwargs: Passed to httpx.Client (base_url, timeout, transport...)
        """
        if not service or not service.strip():
            raise ValueError("service is required and cannot be empty")
        if service not in _SERVICES:
            raise ValueError(f"Unknown service {service!r}, must be one of: {sorted(_SERVICES)}")

        self.service = service
        self.tracker = tracker or get_tracker()
        self.user_id = user_id
        self.client = httpx.Client(**client_kwargs)

    def request(
        self,
        method: str,
        url: str,
        user_id: Optional[str] = None,
        **kwargs: Any
    ) -> httpx.Response:
        """Send a request and track its outcome.

        Raises:
            httpx.HTTPStatusError: For responses with status >= 400
            httpx.RequestError: For transport failures
        """
        if method.upper() not in _METHODS:
            raise ValueError(f"Unsupported method {method!r}, must be one of: {sorted(_METHODS)}")

        user_id = user_id or self.user_id
        send_kwargs = {key: kwargs.pop(key) for key in _SEND_KWARGS if key in kwargs}
        request = self.client.build_request(method, url, **kwargs)
        endpoint = str(request.url.copy_with(query=None))
        method = request.method.upper()
        request_size = _request_size(request)

        start = time.perf_counter()
        try:
            response = self.client.send(request, **send_kwargs)
        except httpx.RequestError as error:
            self._track_failure(
                endpoint, method, start, request_size, user_id, error,
                request_data=kwargs.get("json"),
            )
            raise

        if response.is_error:
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as error:
                self._track_failure(
                    endpoint, method, start, request_size, user_id, error,
                    response=response, request_data=kwargs.get("json"),
                )
                raise

        self.tracker.track_api_call(APICall(
            service=self.service,
            endpoint=endpoint,
            method=method,
            response_time=(time.perf_counter() - start) * 1000,
            status_code=response.status_code,
            success=True,
            request_size=request_size,
            response_size=len(response.content),
            user_id=user_id,
            timestamp=self.tracker.now(),
        ))
        return response

    def _track_failure(
        self,
        endpoint: str,
        method: str,
        start: float,
        request_size: int,
        user_id: Optional[str],
        error: Exception,
        response: Optional[httpx.Response] = None,
        request_data: Any = None
    ) -> None:
        status_code = response.status_code if response is not None else None
        error_code = None if response is not None else type(error).__name__

        self.tracker.track_api_call(APICall(
            service=self.service,
            endpoint=endpoint,
            method=method,
            response_time=(time.perf_counter() - start) * 1000,
            status_code=status_code,
            success=False,
            error_message=str(error),
            error_code=error_code,
            request_size=request_size,
            user_id=user_id,
            timestamp=self.tracker.now(),
        ))

        self.tracker.log_api_error(APIErrorLog(
            service=self.service,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            error_code=error_code,
            error_message=str(error) or type(error).__name__,
            error_stack=traceback.format_exc(),
            request_data=request_data,
            response_data=_response_data(response) if response is not None else None,
            user_id=user_id,
            timestamp=self.tracker.now(),
        ))

        if status_code == 429:
            self.tracker.record_rate_limit_response(self.service, _remaining_header(response))

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("DELETE", url, **kwargs)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "TrackedHTTPClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_tracked_client(service: str, **kwargs: Any) -> TrackedHTTPClient:
    """Shorthand for TrackedHTTPClient(service, **kwargs)."""
    return TrackedHTTPClient(service, **kwargs)
