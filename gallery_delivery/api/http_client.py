"""
Async HTTP client for the storage provider and the rendition proxy.

Provides a clean interface over httpx for form posts to the token endpoint
and raw downloads of photo bytes.
"""

import asyncio
from typing import Any

import httpx
import structlog

from gallery_delivery.config import GalleryDeliveryConfig

logger = structlog.get_logger(__name__)

SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "client_secret",
        "id_token",
        "code",
        "Authorization",
        "authorization",
    }
)


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """
    Remove sensitive fields from a dict before logging.

    Recursively sanitizes nested dictionaries and lists.

    Args:
        data: Dictionary that may contain sensitive values.

    Returns:
        Copy with sensitive values replaced by "***".
    """
    result = {}
    for key, value in data.items():
        if key in SENSITIVE_KEYS:
            result[key] = "***"
        elif isinstance(value, dict):
            result[key] = sanitize_for_log(value)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_log(item) if isinstance(item, dict) else item for item in value
            ]
        else:
            result[key] = value
    return result


class AsyncHttpClient:
    """Async HTTP client shared by the token manager and the archive assembler."""

    def __init__(
        self,
        config: GalleryDeliveryConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            config: Client configuration.
            transport: Optional transport for testing (mock transport).
        """
        self._config = config
        self._transport = transport

        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._holders = 0

    async def __aenter__(self) -> "AsyncHttpClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self._close()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    transport=self._transport,
                    follow_redirects=True,
                    headers={"User-Agent": self._config.user_agent},
                )
            self._holders += 1
        return self._client

    async def _close(self) -> None:
        """Close the HTTP client once the last context manager exits."""
        async with self._client_lock:
            if self._client is None:
                logger.debug("Client not open.")
                return
            self._holders = max(0, self._holders - 1)
            if self._holders != 0:
                logger.debug("Skipping close, client still in use", holders=self._holders)
                return
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "HTTP client not initialized. Use 'async with' first."
            raise RuntimeError(msg)
        return self._client

    async def post_form(
        self,
        url: str,
        data: dict[str, str],
        *,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        POST an ``application/x-www-form-urlencoded`` body.

        The response is returned whatever its status, so callers can classify
        error bodies themselves.

        Args:
            url: Absolute URL.
            data: Form fields.
            timeout: Request timeout; defaults to the token timeout.

        Returns:
            The httpx response with its body read.

        Raises:
            httpx.TimeoutException: If the request timed out.
            httpx.TransportError: If the connection failed.
        """
        client = self._require_client()
        return await client.post(
            url,
            data=data,
            timeout=timeout or self._config.token_timeout,
        )

    async def get_bytes(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> bytes:
        """
        GET a URL and return the raw body.

        Security:
            Only pass URLs built by SourceRouter from provider file IDs.
            NEVER pass user-supplied URLs directly to this method.

        Args:
            url: Absolute URL.
            headers: Extra request headers.
            timeout: Request timeout; defaults to the per-item fetch timeout.

        Returns:
            Raw response bytes.

        Raises:
            httpx.HTTPStatusError: If the response status is not 2xx.
            httpx.HTTPError: If the request fails.
        """
        client = self._require_client()
        response = await client.get(
            url,
            headers=headers,
            timeout=timeout or self._config.item_fetch_timeout,
        )
        response.raise_for_status()
        return response.content
