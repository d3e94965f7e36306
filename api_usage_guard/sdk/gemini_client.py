"""
Tracked Gemini client.

Talks to Gemini through its OpenAI-compatible endpoint and records every
call against the gemini quota.
"""

import json
import os
import time
import traceback
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from ..core.errors import RateLimitExceeded
from ..core.fallback import status_code_of
from ..core.tracker import UsageTracker, get_tracker
from ..storage.models import APICall, APIErrorLog

SERVICE = "gemini"
GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
CHAT_ENDPOINT = "chat/completions"


def _response_size(response: Any) -> int:
    dump = getattr(response, "model_dump_json", None)
    if dump is None:
        return 0
    text = dump()
    return len(text) if isinstance(text, str) else 0


class TrackedGemini:
    """Gemini chat client wrapper that records usage.

    Calls are refused before reaching the network once a gemini quota
    window is exhausted.
    """

    def __init__(
        self,
        model: str,
        tracker: Optional[UsageTracker] = None,
        api_key: Optional[str] = None,
        base_url: str = GEMINI_OPENAI_BASE_URL,
        user_id: Optional[str] = None
    ):
        """Initialize tracked Gemini client.

        Args:
            model: Gemini model name (required)
            tracker: Usage tracker (defaults to the shared tracker)
            api_key: API key (defaults to GEMINI_API_KEY)
            base_url: OpenAI-compatible endpoint
            user_id: User the calls are made for, if any

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.tracker = tracker or get_tracker()
        self.user_id = user_id
        self.client = OpenAI(
            api_key=api_key or os.getenv("GEMINI_API_KEY"),
            base_url=base_url,
        )

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with usage recording.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional completion parameters

        Returns:
            Chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            RateLimitExceeded: If a gemini quota window is exhausted
            OpenAIError: Propagated after being tracked
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        check = self.tracker.check_rate_limit(SERVICE)
        if not check.allowed:
            raise RateLimitExceeded(
                f"Rate limit exceeded for {SERVICE}. Service temporarily unavailable",
                SERVICE,
                check,
            )

        request_size = len(json.dumps(messages))
        start = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except OpenAIError as error:
            self._track_failure(start, request_size, error, messages)
            raise

        usage = getattr(response, "usage", None)
        self.tracker.track_api_call(APICall(
            service=SERVICE,
            endpoint=CHAT_ENDPOINT,
            method="POST",
            response_time=(time.perf_counter() - start) * 1000,
            status_code=200,
            success=True,
            request_size=request_size,
            response_size=_response_size(response),
            user_id=self.user_id,
            timestamp=self.tracker.now(),
            metadata={
                "model": self.model,
                "request_id": getattr(response, "id", None),
                "total_tokens": getattr(usage, "total_tokens", None),
            },
        ))
        return response

    def _track_failure(
        self,
        start: float,
        request_size: int,
        error: OpenAIError,
        messages: List[Dict[str, str]]
    ) -> None:
        status_code = status_code_of(error)
        error_code = type(error).__name__

        self.tracker.track_api_call(APICall(
            service=SERVICE,
            endpoint=CHAT_ENDPOINT,
            method="POST",
            response_time=(time.perf_counter() - start) * 1000,
            status_code=status_code,
            success=False,
            error_message=str(error),
            error_code=error_code,
            request_size=request_size,
            user_id=self.user_id,
            timestamp=self.tracker.now(),
            metadata={"model": self.model},
        ))
        self.tracker.log_api_error(APIErrorLog(
            service=SERVICE,
            endpoint=CHAT_ENDPOINT,
            method="POST",
            status_code=status_code,
            error_code=error_code,
            error_message=str(error) or error_code,
            error_stack=traceback.format_exc(),
            request_data={"model": self.model, "messages": len(messages)},
            user_id=self.user_id,
            timestamp=self.tracker.now(),
        ))
        if status_code == 429:
            self.tracker.record_rate_limit_response(SERVICE)
