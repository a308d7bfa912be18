"""
Gallery delivery exception hierarchy.

All exceptions inherit from GalleryDeliveryError for easy catching.
"""

from typing import Any


class GalleryDeliveryError(Exception):
    """Base exception for all gallery_delivery errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class CredentialError(GalleryDeliveryError):
    """Provider credential could not be used."""

    def __init__(self, message: str, *, principal_id: str | None = None) -> None:
        super().__init__(message, principal_id=principal_id)
        self.principal_id = principal_id


class CredentialMissingError(CredentialError):
    """No refresh token on file; a non-OAuth access strategy should be used."""


class CredentialRevokedError(CredentialError):
    """Provider rejected the refresh token; the principal must reauthorize."""


class RefreshFailedError(CredentialError):
    """Token endpoint answered with an unexpected or malformed response."""


class NetworkError(GalleryDeliveryError):
    """Network-level error (connection failed, unreachable host)."""


class ConnectionTimeoutError(NetworkError):
    """Provider did not answer within the configured bound."""

    def __init__(self, message: str = "Provider connection timed out", *, timeout: float) -> None:
        super().__init__(message, timeout=timeout)
        self.timeout = timeout


class StoreError(GalleryDeliveryError):
    """Credential store read or write failed."""


class ArchiveError(GalleryDeliveryError):
    """Archive pipeline error."""


class ItemFetchFailedError(ArchiveError):
    """A single photo could not be fetched."""

    def __init__(self, message: str, *, photo_id: str) -> None:
        super().__init__(message, photo_id=photo_id)
        self.photo_id = photo_id


class ArchiveAssemblyFailedError(ArchiveError):
    """The archive file itself could not be produced."""
