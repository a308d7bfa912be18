"""
Bulk archive assembly.

Fetches many photos concurrently in bounded batches and packs them into a
single uncompressed ZIP file, reporting progress after every photo.
"""

import asyncio
import io
import os
import re
import zipfile
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence

import structlog

from gallery_delivery.api.endpoints.assets import download_photo
from gallery_delivery.api.http_client import AsyncHttpClient
from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.core.pacing import BatchPacer
from gallery_delivery.exceptions import ArchiveAssemblyFailedError
from gallery_delivery.models.archive import (
    ArchiveCompleted,
    ArchiveEvent,
    ArchiveFinalizing,
    ArchiveLabel,
    ArchiveProgress,
    ArchiveResult,
    ArchiveSummary,
    ConfirmationRequired,
    FetchErr,
    FetchOk,
    FetchResult,
    NamingMode,
)
from gallery_delivery.models.photo import PhotoDescriptor, ResolvedSource
from gallery_delivery.services.source_router import SourceRouter
from gallery_delivery.services.token_manager import TokenCacheManager

logger = structlog.get_logger(__name__)

# Share of the progress bar covered by fetching; the rest is finalization.
FETCH_PROGRESS_SHARE = 95.0
# Fixed entry timestamp so identical inputs produce identical archives.
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_MB = 1024 * 1024
# Names reserved for sequential mode.
_SEQUENTIAL_NAME = re.compile(r"^foto-\d+\.jpg$", re.IGNORECASE)


def sequential_name(photo: PhotoDescriptor) -> str:
    return f"foto-{photo.sequence_index}.jpg"


def preserved_name(photo: PhotoDescriptor) -> str:
    """Display name without any directory part, or ``{id}.jpg`` when there is none."""
    name = (photo.display_name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or f"{photo.id}.jpg"


def entry_names(photos: Sequence[PhotoDescriptor], naming: NamingMode) -> list[str]:
    """
    Compute archive entry names, aligned with ``photos``.

    Names depend only on each photo's fixed gallery position, never on fetch
    order. Collisions get a ``(2)``, ``(3)``... suffix, assigned in gallery order.
    A preserved name that looks like a sequential one (``foto-7.jpg``) is
    treated as taken, so preserve mode never emits that pattern.
    """
    preserve = naming == NamingMode.PRESERVE
    base_name = preserved_name if preserve else sequential_name
    names = [""] * len(photos)
    used: set[str] = set()
    for i in sorted(range(len(photos)), key=lambda i: photos[i].sequence_index):
        name = base_name(photos[i])
        if preserve and _SEQUENTIAL_NAME.match(name):
            used.add(name)
        names[i] = _unique(name, used)
    return names


def _unique(name: str, used: set[str]) -> str:
    candidate = name
    stem, ext = os.path.splitext(name)
    n = 2
    while candidate in used:
        candidate = f"{stem} ({n}){ext}"
        n += 1
    used.add(candidate)
    return candidate


def build_zip(entries: Sequence[FetchOk]) -> bytes:
    """Pack fetched photos, in the given order, into a ZIP without recompressing them."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_STORED, allowZip64=True) as zf:
        for entry in entries:
            info = zipfile.ZipInfo(entry.entry_name, date_time=_ENTRY_DATE_TIME)
            info.compress_type = zipfile.ZIP_STORED
            info.external_attr = 0o644 << 16
            zf.writestr(info, entry.content)
    return buffer.getvalue()


class ArchiveAssembler:
    """
    Fetches photos and assembles them into one archive.

    Within a batch all fetches run concurrently; batches run one after another
    with a pause in between. A photo that cannot be fetched is logged, recorded
    in the summary and skipped. Only a failure while writing the archive fails
    the whole job.
    """

    def __init__(
        self,
        http: AsyncHttpClient,
        router: SourceRouter,
        config: GalleryDeliveryConfig,
        *,
        token_manager: TokenCacheManager | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            http: HTTP client for photo downloads.
            router: Chooses the origin of each photo.
            config: Client configuration (batching, thresholds, timeouts).
            token_manager: Supplies bearer tokens for origins that need one.
            sleep: Sleep coroutine for the pause between batches.
        """
        self._http = http
        self._router = router
        self._config = config
        self._token_manager = token_manager
        self._sleep = sleep

    def needs_confirmation(
        self, photos: Sequence[PhotoDescriptor], confirmed: bool = False
    ) -> ConfirmationRequired | None:
        """
        Check whether a download is large enough to require explicit confirmation.

        Returns:
            A confirmation request with the size estimate, or None if the job may start.
        """
        if confirmed or len(photos) == 0:
            return None

        estimated = self._router.estimate_total_bytes(list(photos))
        reasons: list[str] = []
        if len(photos) > self._config.max_unconfirmed_count:
            reasons.append("count")
        if estimated / _MB > self._config.heavy_threshold_mb:
            reasons.append("size")
        if not reasons:
            return None

        return ConfirmationRequired(
            photo_count=len(photos),
            estimated_bytes=estimated,
            reasons=tuple(reasons),
        )

    async def assemble(
        self,
        photos: Sequence[PhotoDescriptor],
        label: ArchiveLabel,
        *,
        confirmed: bool = False,
        naming: NamingMode = NamingMode.SEQUENTIAL,
        principal_id: str | None = None,
        on_progress: Callable[[ArchiveEvent], None] | None = None,
    ) -> ArchiveResult | ConfirmationRequired:
        """
        Build an archive, unless the download first needs confirmation.

        Args:
            photos: Photos to include.
            label: Archive name.
            confirmed: Whether the guest already confirmed a large download.
            naming: Entry naming mode configured on the gallery.
            principal_id: Owner of the gallery, for authenticated origins.
            on_progress: Called with every event, including the terminal one.

        Returns:
            The archive, or a confirmation request when nothing was fetched.

        Raises:
            ArchiveAssemblyFailedError: If the archive could not be written.
        """
        if (confirmation := self.needs_confirmation(photos, confirmed)) is not None:
            logger.info(
                "Download needs confirmation",
                photos=confirmation.photo_count,
                estimated_mb=round(confirmation.estimated_mb, 1),
                reasons=confirmation.reasons,
            )
            return confirmation

        result: ArchiveResult | None = None
        async for event in self.stream(
            photos, label, naming=naming, principal_id=principal_id
        ):
            if on_progress is not None:
                on_progress(event)
            if isinstance(event, ArchiveCompleted):
                result = event.result

        if result is None:
            msg = "Archive stream ended without a result"
            raise ArchiveAssemblyFailedError(msg, filename=label.filename)
        return result

    async def stream(
        self,
        photos: Sequence[PhotoDescriptor],
        label: ArchiveLabel,
        *,
        naming: NamingMode = NamingMode.SEQUENTIAL,
        principal_id: str | None = None,
    ) -> AsyncGenerator[ArchiveEvent, None]:
        """
        Fetch and archive photos, yielding progress as items settle.

        Closing the generator early cancels the fetches still in flight.

        Yields:
            ArchiveProgress after every item, one ArchiveFinalizing, then
            ArchiveCompleted carrying the result.

        Raises:
            ValueError: If photos is empty.
            ArchiveAssemblyFailedError: If the archive could not be written.
        """
        total = len(photos)
        if total == 0:
            msg = "No photos to archive"
            raise ValueError(msg)

        profile = self._config.profile
        pacer = BatchPacer(
            profile.batch_pause,
            backoff_factor=self._config.batch_backoff_factor,
            max_delay=self._config.max_batch_pause,
            sleep=self._sleep,
        )
        names = entry_names(photos, naming)
        results: list[FetchResult] = []
        completed = 0

        logger.info(
            "Archive job started",
            filename=label.filename,
            photos=total,
            batch_size=profile.batch_size,
            naming=naming,
        )

        for start in range(0, total, profile.batch_size):
            end = min(start + profile.batch_size, total)
            tasks = [
                asyncio.create_task(self._fetch(photos[i], names[i], principal_id))
                for i in range(start, end)
            ]
            failures = 0
            try:
                for settled in asyncio.as_completed(tasks):
                    result = await settled
                    results.append(result)
                    if isinstance(result, FetchErr):
                        failures += 1
                    completed += 1
                    yield ArchiveProgress(
                        percent=completed / total * FETCH_PROGRESS_SHARE,
                        completed=completed,
                        total=total,
                    )
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()

            if end < total:
                await pacer.pause(failures=failures)

        fetched = sorted(
            (r for r in results if isinstance(r, FetchOk)), key=lambda r: r.photo.sequence_index
        )
        skipped = tuple(
            sorted(
                (r for r in results if isinstance(r, FetchErr)),
                key=lambda r: r.photo.sequence_index,
            )
        )
        yield ArchiveFinalizing(succeeded=len(fetched), total=total)

        try:
            content = await asyncio.to_thread(build_zip, fetched)
        except Exception as e:
            logger.error(
                "Archive finalization failed",
                filename=label.filename,
                error_type=type(e).__name__,
            )
            msg = "Failed to write archive"
            raise ArchiveAssemblyFailedError(msg, filename=label.filename) from e

        summary = ArchiveSummary(total=total, succeeded=len(fetched), failures=skipped)
        if summary.is_partial:
            logger.warning(
                "Archive completed with skipped photos",
                filename=label.filename,
                skipped=summary.failed,
                total=total,
            )
        logger.info(
            "Archive ready",
            filename=label.filename,
            entries=summary.succeeded,
            size_bytes=len(content),
        )
        yield ArchiveCompleted(
            result=ArchiveResult(filename=label.filename, content=content, summary=summary)
        )

    async def _fetch(
        self, photo: PhotoDescriptor, entry_name: str, principal_id: str | None
    ) -> FetchResult:
        source = self._router.resolve(photo)
        try:
            async with asyncio.timeout(self._config.item_fetch_timeout):
                token = await self._token_for(source, principal_id)
                content = await download_photo(
                    self._http,
                    source,
                    access_token=token,
                    timeout=self._config.item_fetch_timeout,
                )
        except Exception as e:
            logger.warning(
                "Photo fetch failed, skipping",
                photo_id=photo.id,
                origin=source.origin,
                error_type=type(e).__name__,
            )
            return FetchErr(photo=photo, reason=str(e) or type(e).__name__, error_type=type(e).__name__)

        logger.debug("Photo fetched", photo_id=photo.id, origin=source.origin, size=len(content))
        return FetchOk(photo=photo, entry_name=entry_name, content=content)

    async def _token_for(self, source: ResolvedSource, principal_id: str | None) -> str | None:
        if not source.requires_auth or self._token_manager is None or principal_id is None:
            return None
        return await self._token_manager.get_valid_token(principal_id)
