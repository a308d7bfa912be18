"""
Provider API client layer.

Provides async HTTP communication with the token endpoint and photo origins.
"""

from gallery_delivery.api.http_client import AsyncHttpClient, sanitize_for_log

__all__ = ["AsyncHttpClient", "sanitize_for_log"]
