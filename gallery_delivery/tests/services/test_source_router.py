from collections.abc import Callable

import pytest

from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.models.photo import Origin, PhotoDescriptor
from gallery_delivery.services.source_router import SourceRouter
from gallery_delivery.tests.services.constants import MB


@pytest.fixture
def router(config: GalleryDeliveryConfig) -> SourceRouter:
    return SourceRouter(config)


def test_small_photo_routes_to_original(
    router: SourceRouter, make_photo: Callable[..., PhotoDescriptor]
) -> None:
    photo = make_photo(size_bytes=int(1.2 * MB), photo_id="abc")

    source = router.resolve(photo)

    assert source.origin == Origin.ORIGINAL
    assert source.url == "https://www.googleapis.com/drive/v3/files/abc?alt=media"
    assert source.requires_auth
    assert source.photo_id == "abc"


def test_photo_at_ceiling_routes_to_original(
    router: SourceRouter,
    config: GalleryDeliveryConfig,
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    photo = make_photo(size_bytes=config.original_ceiling_bytes)

    assert router.resolve(photo).origin == Origin.ORIGINAL


def test_large_photo_routes_to_proxy(
    router: SourceRouter, make_photo: Callable[..., PhotoDescriptor]
) -> None:
    photo = make_photo(size_bytes=4 * MB, photo_id="big")

    source = router.resolve(photo)

    assert source.origin == Origin.PROXY
    assert source.url == "http://localhost:3000/api/galeria/cover/big?w=2560"
    assert not source.requires_auth


def test_unknown_size_routes_to_proxy(
    router: SourceRouter, make_photo: Callable[..., PhotoDescriptor]
) -> None:
    photo = make_photo(size_bytes=0)

    assert router.resolve(photo).origin == Origin.PROXY


def test_proxy_base_url_trailing_slash_is_ignored(
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    router = SourceRouter(
        GalleryDeliveryConfig(proxy_base_url="https://gallery.test/", proxy_max_edge=1600)
    )

    source = router.resolve(make_photo(size_bytes=5 * MB, photo_id="x"))

    assert source.url == "https://gallery.test/api/galeria/cover/x?w=1600"


def test_estimates_follow_route(
    router: SourceRouter, make_photo: Callable[..., PhotoDescriptor]
) -> None:
    small = make_photo(1, size_bytes=MB // 2)
    large = make_photo(2, size_bytes=8 * MB)
    unknown = make_photo(3, size_bytes=0)

    assert router.estimate_bytes(small) == MB // 2
    assert router.estimate_bytes(large) == MB
    assert router.estimate_bytes(unknown) == MB
    assert router.estimate_total_bytes([small, large, unknown]) == MB // 2 + 2 * MB
