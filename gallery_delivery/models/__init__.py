"""
Domain models for gallery delivery.

These are mostly immutable (frozen) dataclasses; ArchiveJob is the only mutable one.
"""

from gallery_delivery.models.archive import (
    ArchiveCompleted,
    ArchiveEvent,
    ArchiveFinalizing,
    ArchiveJob,
    ArchiveLabel,
    ArchiveProgress,
    ArchiveResult,
    ArchiveSummary,
    ConfirmationRequired,
    FetchErr,
    FetchOk,
    FetchResult,
    JobKind,
    JobState,
    NamingMode,
    VolumeChoice,
    VolumeChoices,
)
from gallery_delivery.models.credential import (
    AuthStatus,
    Credential,
    ProviderErrorCode,
    SweepReport,
    TokenOutcome,
    TokenResponse,
    TokenResult,
)
from gallery_delivery.models.photo import Origin, PhotoDescriptor, ResolvedSource, Volume

__all__ = [
    # Credential
    "AuthStatus",
    "Credential",
    "ProviderErrorCode",
    "SweepReport",
    "TokenOutcome",
    "TokenResponse",
    "TokenResult",
    # Photo
    "Origin",
    "PhotoDescriptor",
    "ResolvedSource",
    "Volume",
    # Archive
    "ArchiveCompleted",
    "ArchiveEvent",
    "ArchiveFinalizing",
    "ArchiveJob",
    "ArchiveLabel",
    "ArchiveProgress",
    "ArchiveResult",
    "ArchiveSummary",
    "ConfirmationRequired",
    "FetchErr",
    "FetchOk",
    "FetchResult",
    "JobKind",
    "JobState",
    "NamingMode",
    "VolumeChoice",
    "VolumeChoices",
]
