"""Photo byte downloads from the original and proxy origins."""

import structlog

from gallery_delivery.api.http_client import AsyncHttpClient
from gallery_delivery.exceptions import ItemFetchFailedError
from gallery_delivery.models.photo import ResolvedSource

logger = structlog.get_logger(__name__)


async def download_photo(
    http: AsyncHttpClient,
    source: ResolvedSource,
    *,
    access_token: str | None = None,
    timeout: float | None = None,
) -> bytes:
    """
    Download the bytes of one photo.

    Args:
        http: Open async HTTP client.
        source: Location chosen by SourceRouter.
        access_token: Bearer token, attached only when the source requires auth.
        timeout: Per-item timeout in seconds.

    Returns:
        Raw image bytes.

    Raises:
        httpx.HTTPError: If the download fails.
        ItemFetchFailedError: If the origin answered with an empty body.
    """
    headers = {}
    if source.requires_auth and access_token is not None:
        headers["Authorization"] = f"Bearer {access_token}"

    content = await http.get_bytes(source.url, headers=headers or None, timeout=timeout)
    if not content:
        msg = f"Empty body from {source.origin} origin"
        raise ItemFetchFailedError(msg, photo_id=source.photo_id)
    return content
