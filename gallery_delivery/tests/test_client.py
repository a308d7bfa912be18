import io
import zipfile
from pathlib import Path

import httpx
import pytest

from gallery_delivery.client import GalleryDeliveryClient
from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.models.archive import (
    ArchiveJob,
    ArchiveLabel,
    ConfirmationRequired,
    DownloadRecord,
    JobKind,
    JobState,
)
from gallery_delivery.models.credential import AuthStatus, TokenOutcome
from gallery_delivery.models.photo import PhotoDescriptor
from gallery_delivery.storage.credential_store import JsonFileCredentialStore
from gallery_delivery.tests.utils.mock_transport import RecordingTransport

MB = 1024 * 1024
PRINCIPAL = "photographer-1"


def provider(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/token":
        return httpx.Response(
            httpx.codes.OK, json={"access_token": "at-live", "expires_in": 3599}
        )
    photo_id = request.url.path.rsplit("/", 1)[-1]
    return httpx.Response(httpx.codes.OK, content=f"jpeg:{photo_id}".encode())


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport(provider)


@pytest.fixture
def config() -> GalleryDeliveryConfig:
    return GalleryDeliveryConfig(client_id="cid", client_secret="secret", reset_delay=0.0)


def make_gallery(count: int, size_bytes: int = MB // 2) -> list[PhotoDescriptor]:
    return [
        PhotoDescriptor(id=f"p{i}", size_bytes=size_bytes, sequence_index=i)
        for i in range(1, count + 1)
    ]


@pytest.mark.asyncio
async def test_methods_require_context(config: GalleryDeliveryConfig) -> None:
    client = GalleryDeliveryClient(config)

    with pytest.raises(RuntimeError, match="not initialized"):
        await client.get_valid_token(PRINCIPAL)
    assert client.state(JobKind.FULL) == JobState.IDLE


@pytest.mark.asyncio
async def test_consent_then_refresh_through_token_endpoint(
    config: GalleryDeliveryConfig, transport: RecordingTransport, tmp_path: Path
) -> None:
    store = JsonFileCredentialStore(tmp_path / "credentials.json")

    async with GalleryDeliveryClient(config, store=store, transport=transport) as client:
        await client.register_consent(PRINCIPAL, "rt-1")
        result = await client.resolve_token(PRINCIPAL)
        cached = await client.resolve_token(PRINCIPAL)

    assert result.outcome == TokenOutcome.REFRESHED
    assert result.access_token == "at-live"
    assert cached.outcome == TokenOutcome.CACHED
    assert len([r for r in transport.requests if r.url.path == "/token"]) == 1
    stored = await store.get(PRINCIPAL)
    assert stored.access_token == "at-live"
    assert stored.status == AuthStatus.ACTIVE


@pytest.mark.asyncio
async def test_download_volume_end_to_end(
    config: GalleryDeliveryConfig, transport: RecordingTransport, tmp_path: Path
) -> None:
    photos = make_gallery(5)

    async with GalleryDeliveryClient(config, transport=transport) as client:
        await client.register_consent(PRINCIPAL, "rt-1")
        choices = client.volume_choices(photos)
        volume = choices.gallery[0].volume
        job = await client.request_download(
            volume.photos,
            ArchiveLabel(title="Boda Ana", suffix="Vol_1"),
            principal_id=PRINCIPAL,
        )

    assert isinstance(job, ArchiveJob)
    assert job.state == JobState.COMPLETED
    saved = job.result.save(tmp_path)
    assert saved.name == "Boda_Ana_Vol_1.zip"
    with zipfile.ZipFile(io.BytesIO(saved.read_bytes())) as zf:
        assert zf.namelist() == [f"foto-{i}.jpg" for i in range(1, 6)]
    originals = [r for r in transport.requests if r.url.path.startswith("/drive/")]
    assert all(r.headers["authorization"] == "Bearer at-live" for r in originals)
    assert len(originals) == 5


@pytest.mark.asyncio
async def test_large_download_confirm_flow(
    config: GalleryDeliveryConfig, transport: RecordingTransport
) -> None:
    photos = make_gallery(201, size_bytes=4 * MB)

    async with GalleryDeliveryClient(config, transport=transport) as client:
        outcome = await client.request_download(photos, ArchiveLabel(title="Boda", suffix="Vol_1"))
        assert isinstance(outcome, ConfirmationRequired)
        assert client.state(JobKind.FULL) == JobState.AWAITING_CONFIRMATION
        assert transport.requests == []

        job = await client.confirm_download(outcome.job_id)

    assert job.state == JobState.COMPLETED
    assert job.result.summary.succeeded == 201
    assert all(r.url.path.startswith("/api/galeria/cover/") for r in transport.requests)


@pytest.mark.asyncio
async def test_dismiss_through_client(
    config: GalleryDeliveryConfig, transport: RecordingTransport
) -> None:
    async with GalleryDeliveryClient(config, transport=transport) as client:
        outcome = await client.request_download(
            make_gallery(250), ArchiveLabel(title="Boda", suffix="Vol_1")
        )

        assert client.dismiss(outcome.job_id)
        assert client.state(JobKind.FULL) == JobState.IDLE


@pytest.mark.asyncio
async def test_sweep_through_client(
    config: GalleryDeliveryConfig, transport: RecordingTransport
) -> None:
    async with GalleryDeliveryClient(config, transport=transport) as client:
        await client.register_consent(PRINCIPAL, "rt-1")
        report = await client.sweep_credentials()

    assert report.scanned == 1
    assert report.cleaned == ()


@pytest.mark.asyncio
async def test_downloaded_volume_is_reported_and_flagged(
    config: GalleryDeliveryConfig, transport: RecordingTransport
) -> None:
    records: list[DownloadRecord] = []
    photos = make_gallery(3)

    async with GalleryDeliveryClient(
        config, transport=transport, on_complete=records.append
    ) as client:
        volume = client.volume_choices(photos).gallery[0].volume
        await client.request_download(
            volume.photos,
            ArchiveLabel(title="Boda", suffix="Vol_1"),
            volume_index=volume.index,
        )
        choices = client.volume_choices(photos)

    assert [(r.photo_count, r.suffix, r.volume_index) for r in records] == [(3, "Vol_1", 1)]
    assert choices.gallery[0].downloaded
