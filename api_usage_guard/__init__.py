"""
API Usage Guard.

Usage tracking, rate limiting and alerting for third-party API calls.
"""

__version__ = "0.1.0"
