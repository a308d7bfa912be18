"""
Photo and volume domain models.
"""

from dataclasses import dataclass
from enum import StrEnum


class Origin(StrEnum):
    """Where the bytes of a photo are fetched from."""

    ORIGINAL = "original"
    PROXY = "proxy"


@dataclass(frozen=True, kw_only=True)
class PhotoDescriptor:
    """
    A photo as supplied by the gallery.

    Attributes:
        id: Provider file ID.
        size_bytes: Size of the original file; 0 when unknown.
        display_name: Original file name, if known.
        sequence_index: 1-based position in the unfiltered gallery order.
    """

    id: str
    size_bytes: int
    sequence_index: int
    display_name: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            msg = "id must not be empty"
            raise ValueError(msg)
        if self.size_bytes < 0:
            msg = "size_bytes must be non-negative"
            raise ValueError(msg)
        if self.sequence_index < 1:
            msg = "sequence_index must be a 1-based position"
            raise ValueError(msg)


@dataclass(frozen=True, kw_only=True)
class Volume:
    """
    One size-bounded group of photos destined for a single archive.

    Attributes:
        index: 1-based volume number, stable for a given input and ceiling.
        photos: Photos in gallery order.
        cumulative_bytes: Sum of ``size_bytes`` of all photos.
    """

    index: int
    photos: tuple[PhotoDescriptor, ...]
    cumulative_bytes: int

    def __len__(self) -> int:
        return len(self.photos)


@dataclass(frozen=True, kw_only=True)
class ResolvedSource:
    """
    Fetchable location of a photo.

    Attributes:
        photo_id: Provider file ID of the photo.
        origin: Original or proxy rendition.
        url: Absolute URL to fetch.
        requires_auth: Whether a provider bearer token should be attached.
    """

    photo_id: str
    origin: Origin
    url: str
    requires_auth: bool = False
