"""
Download orchestration.

Turns "download these photos as a labeled archive" into an archive job,
enforcing the confirmation gate and allowing one running job per kind.
"""

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace

import structlog

from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.exceptions import ArchiveAssemblyFailedError
from gallery_delivery.models.archive import (
    ArchiveCompleted,
    ArchiveFinalizing,
    ArchiveJob,
    ArchiveLabel,
    ArchiveProgress,
    ConfirmationRequired,
    DownloadRecord,
    JobKind,
    JobState,
    NamingMode,
    VolumeChoice,
    VolumeChoices,
)
from gallery_delivery.models.photo import PhotoDescriptor, Volume
from gallery_delivery.services.archive_assembler import ArchiveAssembler
from gallery_delivery.services.source_router import SourceRouter
from gallery_delivery.services.volume_planner import plan_favorites, plan_volumes

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ArchiveJob], None]
CompletionCallback = Callable[[DownloadRecord], None]


class DownloadOrchestrator:
    """
    Runs archive jobs, one slot per job kind (full gallery, favorites).

    Per kind: IDLE -> AWAITING_CONFIRMATION -> RUNNING -> FINALIZING ->
    COMPLETED | FAILED -> IDLE. A trigger for a kind that is running or
    finalizing is ignored; nothing is queued and the running job is untouched.

    Completed volume indices are remembered per kind and flagged in
    ``volume_choices``.
    """

    def __init__(
        self,
        assembler: ArchiveAssembler,
        router: SourceRouter,
        config: GalleryDeliveryConfig,
        *,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        """
        Args:
            assembler: Builds the archives.
            router: Used for size estimates of volume choices.
            config: Client configuration (profile ceiling, reset delay).
            on_complete: Called with a record after every completed archive.
        """
        self._assembler = assembler
        self._router = router
        self._config = config

        self._active: dict[JobKind, ArchiveJob] = {}
        self._pending: dict[str, ArchiveJob] = {}
        self._resets: dict[JobKind, asyncio.TimerHandle] = {}
        self._on_complete = on_complete
        self._downloaded: dict[JobKind, set[int]] = {kind: set() for kind in JobKind}

    def state(self, kind: JobKind) -> JobState:
        """Current state of a job slot."""
        job = self._active.get(kind)
        return job.state if job is not None else JobState.IDLE

    def current_job(self, kind: JobKind) -> ArchiveJob | None:
        return self._active.get(kind)

    def downloaded_volumes(self, kind: JobKind) -> frozenset[int]:
        """Indices of the volumes of ``kind`` whose archive completed."""
        return frozenset(self._downloaded[kind])

    def volume_choices(
        self,
        photos: Sequence[PhotoDescriptor],
        favorite_ids: Iterable[str] = (),
    ) -> VolumeChoices:
        """
        Plan the volumes offered for the full gallery and for the favorites.

        Both plans use the device profile ceiling and are computed independently.
        Volumes already downloaded in this session are flagged.
        """
        ceiling = self._config.profile.volume_ceiling_bytes
        return VolumeChoices(
            gallery=self._choices(plan_volumes(photos, ceiling), JobKind.FULL),
            favorites=self._choices(
                plan_favorites(photos, favorite_ids, ceiling), JobKind.FAVORITES
            ),
            total_estimated_bytes=self._router.estimate_total_bytes(list(photos)),
        )

    def _choices(self, volumes: list[Volume], kind: JobKind) -> tuple[VolumeChoice, ...]:
        downloaded = self._downloaded[kind]
        return tuple(
            VolumeChoice(
                volume=volume,
                estimated_bytes=self._router.estimate_total_bytes(list(volume.photos)),
                downloaded=volume.index in downloaded,
            )
            for volume in volumes
        )

    async def request_download(
        self,
        photos: Sequence[PhotoDescriptor],
        label: ArchiveLabel,
        *,
        kind: JobKind = JobKind.FULL,
        naming: NamingMode = NamingMode.SEQUENTIAL,
        principal_id: str | None = None,
        volume_index: int | None = None,
        confirmed: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ConfirmationRequired | ArchiveJob | None:
        """
        Start a download, or ask for confirmation first.

        Args:
            photos: Photos to archive (typically one volume).
            label: Archive name.
            kind: Job slot.
            naming: Entry naming mode configured on the gallery.
            principal_id: Gallery owner, for authenticated origins.
            volume_index: Planned volume being downloaded, recorded on completion.
            confirmed: Skip the confirmation gate.
            on_progress: Called with the job whenever its progress or state changes.

        Returns:
            ConfirmationRequired carrying a job ID for ``confirm_download``; the
            finished job; or None when the trigger was ignored (empty list or the
            slot is busy).

        Raises:
            ArchiveAssemblyFailedError: If the archive could not be produced.
        """
        if len(photos) == 0:
            logger.debug("Empty download request ignored", kind=kind)
            return None
        if self.state(kind).is_busy:
            logger.info("Download already in progress, trigger ignored", kind=kind)
            return None

        job = ArchiveJob(
            kind=kind,
            targets=tuple(photos),
            label=label,
            naming=naming,
            principal_id=principal_id,
            volume_index=volume_index,
            is_confirmed=confirmed,
        )

        confirmation = self._assembler.needs_confirmation(job.targets, confirmed)
        if confirmation is None:
            return await self._run(job, on_progress)

        self._cancel_reset(kind)
        self._drop_pending(kind)
        job.state = JobState.AWAITING_CONFIRMATION
        self._active[kind] = job
        self._pending[job.job_id] = job
        return replace(confirmation, job_id=job.job_id)

    async def confirm_download(
        self, job_id: str, *, on_progress: ProgressCallback | None = None
    ) -> ArchiveJob | None:
        """
        Run a job that was waiting for confirmation.

        Returns:
            The finished job, or None if the ID is unknown or the slot is busy.

        Raises:
            ArchiveAssemblyFailedError: If the archive could not be produced.
        """
        job = self._pending.get(job_id)
        if job is None:
            logger.warning("No download awaiting confirmation", job_id=job_id)
            return None
        if self.state(job.kind).is_busy:
            logger.info("Download already in progress, confirmation ignored", kind=job.kind)
            return None

        del self._pending[job_id]
        job.is_confirmed = True
        return await self._run(job, on_progress)

    def dismiss(self, job_id: str) -> bool:
        """
        Drop a job awaiting confirmation, returning its slot to idle.

        Returns:
            Whether a pending job was dismissed.
        """
        job = self._pending.pop(job_id, None)
        if job is None:
            return False
        if self._active.get(job.kind) is job:
            del self._active[job.kind]
        job.state = JobState.IDLE
        logger.debug("Pending download dismissed", job_id=job_id, kind=job.kind)
        return True

    def close(self) -> None:
        """Cancel scheduled resets and forget all jobs."""
        for handle in self._resets.values():
            handle.cancel()
        self._resets.clear()
        self._active.clear()
        self._pending.clear()

    async def _run(self, job: ArchiveJob, on_progress: ProgressCallback | None) -> ArchiveJob:
        self._cancel_reset(job.kind)
        self._active[job.kind] = job
        job.state = JobState.RUNNING
        self._notify(job, on_progress)

        try:
            async for event in self._assembler.stream(
                job.targets, job.label, naming=job.naming, principal_id=job.principal_id
            ):
                if isinstance(event, ArchiveProgress):
                    job.advance(event.percent)
                elif isinstance(event, ArchiveFinalizing):
                    job.state = JobState.FINALIZING
                elif isinstance(event, ArchiveCompleted):
                    job.advance(100.0)
                    job.result = event.result
                    job.state = JobState.COMPLETED
                self._notify(job, on_progress)
        except ArchiveAssemblyFailedError as e:
            self._fail(job, e, e.__cause__ or e, on_progress)
            raise
        except asyncio.CancelledError:
            job.state = JobState.FAILED
            self._release(job)
            raise
        except Exception as e:
            msg = "Archive job failed"
            error = ArchiveAssemblyFailedError(msg, filename=job.label.filename)
            self._fail(job, error, e, on_progress)
            raise error from e

        if job.state == JobState.COMPLETED:
            self._record(job)
        self._schedule_reset(job)
        return job

    def _record(self, job: ArchiveJob) -> None:
        if job.volume_index is not None:
            self._downloaded[job.kind].add(job.volume_index)
        logger.info(
            "Archive downloaded",
            job_id=job.job_id,
            kind=job.kind,
            count=len(job.targets),
            suffix=job.label.suffix,
        )
        if self._on_complete is None:
            return
        record = DownloadRecord(
            job_id=job.job_id,
            kind=job.kind,
            photo_count=len(job.targets),
            suffix=job.label.suffix,
            filename=job.label.filename,
            volume_index=job.volume_index,
        )
        try:
            self._on_complete(record)
        except Exception as e:
            logger.warning("Completion callback raised", job_id=job.job_id, error_type=type(e).__name__)

    def _fail(
        self,
        job: ArchiveJob,
        error: ArchiveAssemblyFailedError,
        cause: BaseException,
        on_progress: ProgressCallback | None,
    ) -> None:
        logger.error(
            "Archive job failed",
            job_id=job.job_id,
            kind=job.kind,
            error_type=type(cause).__name__,
        )
        job.error = error
        job.state = JobState.FAILED
        self._notify(job, on_progress)
        self._schedule_reset(job)

    @staticmethod
    def _notify(job: ArchiveJob, on_progress: ProgressCallback | None) -> None:
        if on_progress is None:
            return
        try:
            on_progress(job)
        except Exception as e:
            logger.warning("Progress callback raised", job_id=job.job_id, error_type=type(e).__name__)

    def _schedule_reset(self, job: ArchiveJob) -> None:
        self._cancel_reset(job.kind)
        loop = asyncio.get_running_loop()
        self._resets[job.kind] = loop.call_later(self._config.reset_delay, self._release, job)

    def _cancel_reset(self, kind: JobKind) -> None:
        if (handle := self._resets.pop(kind, None)) is not None:
            handle.cancel()

    def _release(self, job: ArchiveJob) -> None:
        if self._active.get(job.kind) is job:
            del self._active[job.kind]
            logger.debug("Job slot back to idle", kind=job.kind)
        self._resets.pop(job.kind, None)

    def _drop_pending(self, kind: JobKind) -> None:
        for job_id in [jid for jid, job in self._pending.items() if job.kind == kind]:
            del self._pending[job_id]
