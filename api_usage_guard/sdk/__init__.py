"""
SDK for API Usage Guard.

Tracked clients for calling third-party services.
"""

from .gemini_client import TrackedGemini
from .http_client import TrackedHTTPClient, create_tracked_client

__all__ = ["TrackedGemini", "TrackedHTTPClient", "create_tracked_client"]
