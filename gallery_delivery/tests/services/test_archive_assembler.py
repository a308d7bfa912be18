import io
import re
import zipfile
from collections.abc import AsyncIterator, Callable
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
import pytest_asyncio

from gallery_delivery.api.http_client import AsyncHttpClient
from gallery_delivery.config import DeviceProfile, GalleryDeliveryConfig
from gallery_delivery.exceptions import ArchiveAssemblyFailedError, ConnectionTimeoutError
from gallery_delivery.models.archive import (
    ArchiveCompleted,
    ArchiveEvent,
    ArchiveFinalizing,
    ArchiveLabel,
    ArchiveProgress,
    ArchiveResult,
    ConfirmationRequired,
    FetchOk,
    NamingMode,
)
from gallery_delivery.models.photo import PhotoDescriptor
from gallery_delivery.services.archive_assembler import (
    FETCH_PROGRESS_SHARE,
    ArchiveAssembler,
    build_zip,
    entry_names,
)
from gallery_delivery.services.source_router import SourceRouter
from gallery_delivery.tests.services.constants import MB, PRINCIPAL
from gallery_delivery.tests.utils.mock_transport import RecordingTransport

LABEL = ArchiveLabel(title="Boda Ana", suffix="Vol_1")
SMALL = MB // 2
LARGE = 4 * MB


def photo_bytes(photo_id: str) -> bytes:
    return f"jpeg:{photo_id}".encode()


class PhotoOrigin:
    """Serves every photo by ID; IDs in ``failing`` answer 404."""

    def __init__(self) -> None:
        self.failing: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        photo_id = request.url.path.rsplit("/", 1)[-1]
        if photo_id in self.failing:
            return httpx.Response(httpx.codes.NOT_FOUND)
        return httpx.Response(httpx.codes.OK, content=photo_bytes(photo_id))


def read_zip(result: ArchiveResult) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(result.content))


@pytest.fixture
def config() -> GalleryDeliveryConfig:
    return GalleryDeliveryConfig(
        profile=DeviceProfile(
            name="test", volume_ceiling_bytes=500 * MB, batch_size=3, batch_pause=0.1
        ),
        max_unconfirmed_count=200,
        heavy_threshold_mb=500.0,
    )


@pytest.fixture
def origin() -> PhotoOrigin:
    return PhotoOrigin()


@pytest.fixture
def transport(origin: PhotoOrigin) -> RecordingTransport:
    return RecordingTransport(origin)


@pytest_asyncio.fixture
async def http(
    config: GalleryDeliveryConfig, transport: RecordingTransport
) -> AsyncIterator[AsyncHttpClient]:
    async with AsyncHttpClient(config, transport=transport) as client:
        yield client


@pytest.fixture
def token_manager() -> Mock:
    manager = Mock()
    manager.get_valid_token = AsyncMock(return_value="at-1")
    return manager


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def assembler(
    http: AsyncHttpClient,
    config: GalleryDeliveryConfig,
    token_manager: Mock,
    sleep: AsyncMock,
) -> ArchiveAssembler:
    return ArchiveAssembler(
        http, SourceRouter(config), config, token_manager=token_manager, sleep=sleep
    )


# Entry naming


def test_sequential_names_use_gallery_position(
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    photos = [make_photo(7), make_photo(2), make_photo(40)]

    assert entry_names(photos, NamingMode.SEQUENTIAL) == ["foto-7.jpg", "foto-2.jpg", "foto-40.jpg"]


def test_preserved_names_strip_directories_and_fall_back_to_id(
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    photos = [
        make_photo(1, display_name="../../etc/IMG_001.jpg"),
        make_photo(2, display_name=None, photo_id="abc"),
        make_photo(3, display_name="C:\\Users\\me\\IMG_002.jpg"),
    ]

    assert entry_names(photos, NamingMode.PRESERVE) == ["IMG_001.jpg", "abc.jpg", "IMG_002.jpg"]


def test_duplicate_preserved_names_get_suffix_in_gallery_order(
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    photos = [
        make_photo(5, display_name="IMG.jpg"),
        make_photo(1, display_name="IMG.jpg"),
        make_photo(3, display_name="IMG.jpg"),
    ]

    assert entry_names(photos, NamingMode.PRESERVE) == ["IMG (3).jpg", "IMG.jpg", "IMG (2).jpg"]


def test_preserved_names_never_look_sequential(
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    photos = [
        make_photo(1, display_name="foto-9.jpg"),
        make_photo(2, display_name="IMG_1.jpg"),
        make_photo(3, display_name="FOTO-2.JPG"),
    ]

    names = entry_names(photos, NamingMode.PRESERVE)

    assert names == ["foto-9 (2).jpg", "IMG_1.jpg", "FOTO-2 (2).JPG"]
    assert not any(re.fullmatch(r"foto-\d+\.jpg", n, re.IGNORECASE) for n in names)


def test_build_zip_is_stored_and_deterministic(
    make_photo: Callable[..., PhotoDescriptor],
) -> None:
    entries = [
        FetchOk(photo=make_photo(1), entry_name="foto-1.jpg", content=b"a" * 100),
        FetchOk(photo=make_photo(2), entry_name="foto-2.jpg", content=b"b" * 100),
    ]

    first = build_zip(entries)

    assert first == build_zip(entries)
    with zipfile.ZipFile(io.BytesIO(first)) as zf:
        assert zf.namelist() == ["foto-1.jpg", "foto-2.jpg"]
        assert all(info.compress_type == zipfile.ZIP_STORED for info in zf.infolist())
        assert zf.read("foto-2.jpg") == b"b" * 100


# Confirmation gate


def test_small_download_needs_no_confirmation(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    assert assembler.needs_confirmation(make_photos([SMALL] * 10)) is None


def test_many_photos_need_confirmation(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    confirmation = assembler.needs_confirmation(make_photos([SMALL] * 201))

    assert confirmation is not None
    assert confirmation.photo_count == 201
    assert confirmation.reasons == ("count",)
    assert confirmation.estimated_bytes == 201 * SMALL


def test_heavy_download_needs_confirmation(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    # Large photos go through the proxy and are estimated at 1 MB each.
    confirmation = assembler.needs_confirmation(make_photos([LARGE] * 150 + [SMALL] * 50) * 3)

    assert confirmation is not None
    assert "size" in confirmation.reasons


def test_confirmed_download_skips_gate(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    assert assembler.needs_confirmation(make_photos([SMALL] * 500), confirmed=True) is None


@pytest.mark.asyncio
async def test_unconfirmed_large_download_fetches_nothing(
    assembler: ArchiveAssembler,
    transport: RecordingTransport,
    make_photos: Callable[..., list[PhotoDescriptor]],
) -> None:
    result = await assembler.assemble(make_photos([SMALL] * 250), LABEL)

    assert isinstance(result, ConfirmationRequired)
    assert result.photo_count == 250
    assert transport.requests == []


# Assembly


@pytest.mark.asyncio
async def test_all_photos_are_archived_in_gallery_order(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    photos = make_photos([SMALL, LARGE, SMALL, LARGE, SMALL, SMALL, SMALL])

    result = await assembler.assemble(photos, LABEL, principal_id=PRINCIPAL)

    assert isinstance(result, ArchiveResult)
    assert result.filename == "Boda_Ana_Vol_1.zip"
    assert result.summary.total == 7
    assert result.summary.succeeded == 7
    assert not result.summary.is_partial
    with read_zip(result) as zf:
        assert zf.namelist() == [f"foto-{i}.jpg" for i in range(1, 8)]
        assert zf.read("foto-2.jpg") == photo_bytes("photo-2")


@pytest.mark.asyncio
async def test_failed_photos_are_skipped(
    assembler: ArchiveAssembler,
    origin: PhotoOrigin,
    make_photos: Callable[..., list[PhotoDescriptor]],
) -> None:
    origin.failing = {"photo-2", "photo-5"}
    photos = make_photos([SMALL] * 6)
    events: list[ArchiveEvent] = []

    result = await assembler.assemble(photos, LABEL, on_progress=events.append)

    assert result.summary.succeeded == 4
    assert [f.photo.id for f in result.summary.failures] == ["photo-2", "photo-5"]
    with read_zip(result) as zf:
        assert zf.namelist() == ["foto-1.jpg", "foto-3.jpg", "foto-4.jpg", "foto-6.jpg"]

    progress = [e for e in events if isinstance(e, ArchiveProgress)]
    assert len(progress) == 6
    assert progress[-1].completed == 6
    assert progress[-1].percent == pytest.approx(FETCH_PROGRESS_SHARE)
    assert isinstance(events[-1], ArchiveCompleted)


@pytest.mark.asyncio
async def test_all_failures_produce_empty_archive(
    assembler: ArchiveAssembler,
    origin: PhotoOrigin,
    make_photos: Callable[..., list[PhotoDescriptor]],
) -> None:
    origin.failing = {"photo-1", "photo-2"}

    result = await assembler.assemble(make_photos([SMALL, SMALL]), LABEL)

    assert result.summary.succeeded == 0
    assert result.summary.failed == 2
    with read_zip(result) as zf:
        assert zf.namelist() == []


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_finishes(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    events = [
        event
        async for event in assembler.stream(make_photos([SMALL] * 8), LABEL)
    ]

    percents = [e.percent for e in events if isinstance(e, ArchiveProgress)]
    assert percents == sorted(percents)
    assert len(percents) == 8
    assert isinstance(events[-2], ArchiveFinalizing)
    assert events[-2].succeeded == 8
    assert isinstance(events[-1], ArchiveCompleted)


@pytest.mark.asyncio
async def test_batches_are_paced(
    assembler: ArchiveAssembler,
    sleep: AsyncMock,
    make_photos: Callable[..., list[PhotoDescriptor]],
) -> None:
    # batch_size=3: 7 photos make 3 batches and 2 pauses.
    await assembler.assemble(make_photos([SMALL] * 7), LABEL)

    assert sleep.await_count == 2
    assert sleep.await_args_list[0].args[0] == 0.1


@pytest.mark.asyncio
async def test_originals_carry_bearer_token_and_proxies_do_not(
    assembler: ArchiveAssembler,
    transport: RecordingTransport,
    token_manager: Mock,
    make_photos: Callable[..., list[PhotoDescriptor]],
) -> None:
    await assembler.assemble(make_photos([SMALL, LARGE]), LABEL, principal_id=PRINCIPAL)

    by_path = {r.url.path: r for r in transport.requests}
    original = by_path["/drive/v3/files/photo-1"]
    proxy = by_path["/api/galeria/cover/photo-2"]
    assert original.headers["authorization"] == "Bearer at-1"
    assert "authorization" not in proxy.headers
    assert proxy.url.params["w"] == "2560"
    token_manager.get_valid_token.assert_awaited_once_with(PRINCIPAL)


@pytest.mark.asyncio
async def test_token_failure_skips_only_that_photo(
    assembler: ArchiveAssembler,
    token_manager: Mock,
    make_photos: Callable[..., list[PhotoDescriptor]],
) -> None:
    token_manager.get_valid_token.side_effect = ConnectionTimeoutError(timeout=10.0)

    result = await assembler.assemble(make_photos([SMALL, LARGE]), LABEL, principal_id=PRINCIPAL)

    assert result.summary.succeeded == 1
    assert result.summary.failures[0].error_type == "ConnectionTimeoutError"


@pytest.mark.asyncio
async def test_preserve_naming_in_archive(
    assembler: ArchiveAssembler, make_photo: Callable[..., PhotoDescriptor]
) -> None:
    photos = [
        make_photo(1, SMALL, display_name="DSC_0001.JPG"),
        make_photo(2, SMALL, display_name="DSC_0001.JPG"),
    ]

    result = await assembler.assemble(photos, LABEL, naming=NamingMode.PRESERVE)

    with read_zip(result) as zf:
        assert zf.namelist() == ["DSC_0001.JPG", "DSC_0001 (2).JPG"]


@pytest.mark.asyncio
async def test_finalization_failure_raises(
    assembler: ArchiveAssembler, make_photos: Callable[..., list[PhotoDescriptor]]
) -> None:
    with patch(
        "gallery_delivery.services.archive_assembler.build_zip",
        side_effect=OSError("disk full"),
    ):
        with pytest.raises(ArchiveAssemblyFailedError) as exc_info:
            await assembler.assemble(make_photos([SMALL]), LABEL)

    assert exc_info.value.context["filename"] == LABEL.filename
    assert isinstance(exc_info.value.__cause__, OSError)


@pytest.mark.asyncio
async def test_stream_rejects_empty_input(assembler: ArchiveAssembler) -> None:
    with pytest.raises(ValueError, match="No photos"):
        async for _ in assembler.stream([], LABEL):
            pass
