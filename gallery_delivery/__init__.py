"""
Gallery Delivery.

Async delivery of photo galleries as downloadable archives: provider token
caching, size-bounded volume planning and bulk ZIP assembly.

Example:
    ```python
    from gallery_delivery import ArchiveLabel, GalleryDeliveryClient, GalleryDeliveryConfig

    config = GalleryDeliveryConfig.from_env()
    async with GalleryDeliveryClient(config) as client:
        choices = client.volume_choices(photos)
        for choice in choices.gallery:
            job = await client.request_download(
                choice.volume.photos,
                ArchiveLabel(title="Wedding", suffix=f"parte{choice.volume.index}"),
                confirmed=True,
            )
            job.result.save("downloads")
    ```
"""

from gallery_delivery.client import GalleryDeliveryClient
from gallery_delivery.config import DeviceProfile, GalleryDeliveryConfig
from gallery_delivery.exceptions import (
    ArchiveAssemblyFailedError,
    ArchiveError,
    ConnectionTimeoutError,
    CredentialError,
    CredentialMissingError,
    CredentialRevokedError,
    GalleryDeliveryError,
    ItemFetchFailedError,
    NetworkError,
    RefreshFailedError,
    StoreError,
)
from gallery_delivery.models.archive import (
    ArchiveJob,
    ArchiveLabel,
    ArchiveResult,
    ConfirmationRequired,
    DownloadRecord,
    JobKind,
    JobState,
    NamingMode,
)
from gallery_delivery.models.photo import PhotoDescriptor, Volume
from gallery_delivery.storage.credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
)

__version__ = "0.1.0"

__all__ = [
    # Main client
    "GalleryDeliveryClient",
    "GalleryDeliveryConfig",
    "DeviceProfile",
    # Storage
    "CredentialStore",
    "InMemoryCredentialStore",
    "JsonFileCredentialStore",
    # Models
    "ArchiveJob",
    "ArchiveLabel",
    "ArchiveResult",
    "ConfirmationRequired",
    "DownloadRecord",
    "JobKind",
    "JobState",
    "NamingMode",
    "PhotoDescriptor",
    "Volume",
    # Exceptions
    "GalleryDeliveryError",
    "CredentialError",
    "CredentialMissingError",
    "CredentialRevokedError",
    "RefreshFailedError",
    "NetworkError",
    "ConnectionTimeoutError",
    "StoreError",
    "ArchiveError",
    "ItemFetchFailedError",
    "ArchiveAssemblyFailedError",
]
