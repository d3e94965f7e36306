"""
Core modules for API Usage Guard.

This package contains rate limiting, usage tracking, alerting,
retry/fallback handling and monitoring reports.
"""
