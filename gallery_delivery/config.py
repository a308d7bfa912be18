"""
Gallery delivery configuration.
"""

import os
from dataclasses import dataclass, field
from typing import ClassVar, Self

_MB = 1024 * 1024


@dataclass(frozen=True, kw_only=True)
class DeviceProfile:
    """
    Throughput settings for one class of client device.

    Attributes:
        name: Profile name, used in logs.
        volume_ceiling_bytes: Maximum size of one archive volume.
        batch_size: Number of photos fetched concurrently.
        batch_pause: Pause between batches in seconds.
    """

    name: str
    volume_ceiling_bytes: int
    batch_size: int
    batch_pause: float

    STANDARD: ClassVar["DeviceProfile"]
    CONSTRAINED: ClassVar["DeviceProfile"]

    def __post_init__(self) -> None:
        if self.volume_ceiling_bytes <= 0:
            msg = "volume_ceiling_bytes must be positive"
            raise ValueError(msg)
        if self.batch_size <= 0:
            msg = "batch_size must be positive"
            raise ValueError(msg)
        if self.batch_pause < 0:
            msg = "batch_pause must be non-negative"
            raise ValueError(msg)


DeviceProfile.STANDARD = DeviceProfile(
    name="standard", volume_ceiling_bytes=500 * _MB, batch_size=50, batch_pause=0.15
)
DeviceProfile.CONSTRAINED = DeviceProfile(
    name="constrained", volume_ceiling_bytes=200 * _MB, batch_size=20, batch_pause=0.4
)


@dataclass(frozen=True, kw_only=True)
class GalleryDeliveryConfig:
    """
    Attributes:
        client_id: OAuth client ID registered with the provider.
        client_secret: OAuth client secret.
        token_url: Provider token endpoint.
        token_timeout: Bound on a single token refresh call in seconds.
        refresh_margin: Access tokens expiring within this many seconds are refreshed.
        max_retries: Maximum number of retries for throttled or failing refresh calls.
        retry_delay: Base delay between retries in seconds.
        token_requests_per_window: Maximum refresh calls per rate window.
        token_rate_window: Length of the rate window in seconds.
        original_url_template: URL of an unmodified original, formatted with ``photo_id``.
        proxy_base_url: Base URL of the service hosting resized renditions.
        proxy_max_edge: Long-edge cap of proxy renditions in pixels.
        original_ceiling_bytes: Largest photo fetched as an unmodified original.
        proxy_estimate_bytes: Expected transfer size of one proxy rendition.
        max_unconfirmed_count: Photo count above which a download needs confirmation.
        heavy_threshold_mb: Estimated size above which a download needs confirmation.
        item_fetch_timeout: Timeout for fetching a single photo in seconds.
        batch_backoff_factor: Multiplier applied to the batch pause after failing batches.
        max_batch_pause: Upper bound for the batch pause in seconds.
        reset_delay: Delay before a finished job returns to idle in seconds.
        user_agent: User-Agent header value.
        profile: Device profile (volume ceiling, batch size, pause).
    """

    client_id: str = ""
    client_secret: str = ""
    token_url: str = "https://oauth2.googleapis.com/token"
    token_timeout: float = 10.0
    refresh_margin: float = 300.0
    max_retries: int = 3
    retry_delay: float = 1.0
    token_requests_per_window: int = 10
    token_rate_window: float = 60.0
    original_url_template: str = "https://www.googleapis.com/drive/v3/files/{photo_id}?alt=media"
    proxy_base_url: str = "http://localhost:3000"
    proxy_max_edge: int = 2560
    original_ceiling_bytes: int = int(1.5 * _MB)
    proxy_estimate_bytes: int = 1 * _MB
    max_unconfirmed_count: int = 200
    heavy_threshold_mb: float = 500.0
    item_fetch_timeout: float = 60.0
    batch_backoff_factor: float = 2.0
    max_batch_pause: float = 5.0
    reset_delay: float = 1.5
    user_agent: str = "GalleryDelivery-Python/1.0"
    profile: DeviceProfile = field(default_factory=lambda: DeviceProfile.STANDARD)

    def __post_init__(self) -> None:
        if self.token_timeout <= 0:
            msg = "token_timeout must be positive"
            raise ValueError(msg)
        if self.refresh_margin < 0:
            msg = "refresh_margin must be non-negative"
            raise ValueError(msg)
        if self.max_retries < 0:
            msg = "max_retries must be non-negative"
            raise ValueError(msg)
        if self.retry_delay < 0:
            msg = "retry_delay must be non-negative"
            raise ValueError(msg)
        if self.token_requests_per_window <= 0:
            msg = "token_requests_per_window must be positive"
            raise ValueError(msg)
        if self.token_rate_window <= 0:
            msg = "token_rate_window must be positive"
            raise ValueError(msg)
        if self.original_ceiling_bytes <= 0:
            msg = "original_ceiling_bytes must be positive"
            raise ValueError(msg)
        if self.proxy_max_edge <= 0:
            msg = "proxy_max_edge must be positive"
            raise ValueError(msg)
        if self.max_unconfirmed_count < 0:
            msg = "max_unconfirmed_count must be non-negative"
            raise ValueError(msg)
        if self.item_fetch_timeout <= 0:
            msg = "item_fetch_timeout must be positive"
            raise ValueError(msg)
        if self.batch_backoff_factor < 1:
            msg = "batch_backoff_factor must be at least 1"
            raise ValueError(msg)
        if self.reset_delay < 0:
            msg = "reset_delay must be non-negative"
            raise ValueError(msg)

    @classmethod
    def from_env(cls, **overrides: object) -> Self:
        """
        Build a config with OAuth client credentials taken from the environment.

        Reads ``GOOGLE_CLIENT_ID`` and ``GOOGLE_CLIENT_SECRET``; keyword overrides win.
        """
        values: dict[str, object] = {
            "client_id": os.getenv("GOOGLE_CLIENT_ID", ""),
            "client_secret": os.getenv("GOOGLE_CLIENT_SECRET", ""),
        }
        values.update(overrides)
        return cls(**values)
