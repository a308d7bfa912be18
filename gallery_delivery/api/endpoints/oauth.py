"""OAuth token endpoint."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from gallery_delivery.api.http_client import AsyncHttpClient, sanitize_for_log
from gallery_delivery.exceptions import ConnectionTimeoutError, NetworkError
from gallery_delivery.models.credential import TokenResponse

logger = structlog.get_logger(__name__)


def _is_retryable(status_code: int) -> bool:
    return status_code == httpx.codes.TOO_MANY_REQUESTS or status_code >= 500


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


async def refresh_access_token(
    http: AsyncHttpClient,
    *,
    token_url: str,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    timeout: float,
    max_retries: int = 0,
    retry_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> TokenResponse:
    """
    Exchange a refresh token for a new access token.

    Throttled (429) and server-side (5xx) answers are retried with exponential
    backoff; timeouts are not retried.

    Args:
        http: Open async HTTP client.
        token_url: Provider token endpoint.
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        refresh_token: Refresh token of the principal.
        timeout: Bound on each attempt in seconds.
        max_retries: Retries after the first attempt.
        retry_delay: Base backoff delay in seconds.
        sleep: Sleep coroutine, injectable for tests.

    Returns:
        The classified response of the last attempt. Error bodies are not raised.

    Raises:
        ConnectionTimeoutError: If an attempt did not complete within ``timeout``.
        NetworkError: If the endpoint could not be reached.
    """
    form = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }

    attempt = 0
    while True:
        try:
            async with asyncio.timeout(timeout):
                response = await http.post_form(token_url, form, timeout=timeout)
        except (httpx.TimeoutException, TimeoutError) as e:
            logger.warning("Token endpoint timed out", timeout=timeout)
            raise ConnectionTimeoutError(timeout=timeout) from e
        except httpx.TransportError as e:
            logger.warning("Token endpoint unreachable", error_type=type(e).__name__)
            msg = "Could not reach the provider token endpoint"
            raise NetworkError(msg, url=token_url) from e

        if _is_retryable(response.status_code) and attempt < max_retries:
            delay = retry_delay * (2**attempt)
            logger.warning(
                "Token endpoint returned retryable status",
                status_code=response.status_code,
                attempt=attempt + 1,
                delay=delay,
            )
            attempt += 1
            await sleep(delay)
            continue

        payload = _decode(response)
        if response.status_code != httpx.codes.OK:
            logger.debug(
                "Token endpoint error body",
                status_code=response.status_code,
                body=sanitize_for_log(payload) if isinstance(payload, dict) else None,
            )
        return TokenResponse.from_payload(payload, status_code=response.status_code)
