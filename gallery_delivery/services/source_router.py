"""Chooses between the unmodified original and the resized proxy rendition."""

from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.models.photo import Origin, PhotoDescriptor, ResolvedSource


class SourceRouter:
    """
    Maps a photo to the URL its bytes are fetched from.

    Photos up to ``original_ceiling_bytes`` are fetched as unmodified originals.
    Larger photos, and photos of unknown size, go through the proxy, which caps
    the long edge at ``proxy_max_edge`` pixels.
    """

    def __init__(self, config: GalleryDeliveryConfig) -> None:
        self._original_template = config.original_url_template
        self._proxy_base_url = config.proxy_base_url.rstrip("/")
        self._proxy_max_edge = config.proxy_max_edge
        self._original_ceiling = config.original_ceiling_bytes
        self._proxy_estimate = config.proxy_estimate_bytes

    def resolve(self, photo: PhotoDescriptor) -> ResolvedSource:
        if self.routes_to_original(photo):
            return ResolvedSource(
                photo_id=photo.id,
                origin=Origin.ORIGINAL,
                url=self._original_template.format(photo_id=photo.id),
                requires_auth=True,
            )
        return ResolvedSource(
            photo_id=photo.id,
            origin=Origin.PROXY,
            url=f"{self._proxy_base_url}/api/galeria/cover/{photo.id}?w={self._proxy_max_edge}",
        )

    def routes_to_original(self, photo: PhotoDescriptor) -> bool:
        return 0 < photo.size_bytes <= self._original_ceiling

    def estimate_bytes(self, photo: PhotoDescriptor) -> int:
        """Expected transfer size of a photo given its route."""
        if self.routes_to_original(photo):
            return photo.size_bytes
        if photo.size_bytes == 0:
            return self._proxy_estimate
        return min(photo.size_bytes, self._proxy_estimate)

    def estimate_total_bytes(self, photos: list[PhotoDescriptor]) -> int:
        return sum(self.estimate_bytes(photo) for photo in photos)
