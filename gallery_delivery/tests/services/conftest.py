from collections.abc import Callable
from unittest.mock import Mock

import pytest

from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.models.photo import PhotoDescriptor
from gallery_delivery.tests.services.constants import MB, NOW
from gallery_delivery.tests.utils.clock import FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def config() -> GalleryDeliveryConfig:
    return GalleryDeliveryConfig(client_id="cid", client_secret="secret", reset_delay=0.0)


@pytest.fixture
def mock_http() -> Mock:
    return Mock()


@pytest.fixture
def make_photo() -> Callable[..., PhotoDescriptor]:
    def _make(
        sequence_index: int = 1,
        size_bytes: int = 1 * MB,
        photo_id: str | None = None,
        display_name: str | None = None,
    ) -> PhotoDescriptor:
        return PhotoDescriptor(
            id=photo_id or f"photo-{sequence_index}",
            size_bytes=size_bytes,
            sequence_index=sequence_index,
            display_name=display_name,
        )

    return _make


@pytest.fixture
def make_photos(
    make_photo: Callable[..., PhotoDescriptor],
) -> Callable[..., list[PhotoDescriptor]]:
    def _make(sizes: list[int]) -> list[PhotoDescriptor]:
        return [make_photo(i, size) for i, size in enumerate(sizes, start=1)]

    return _make
