"""
Archive job domain models.

Fetch outcomes, progress events and job state for the bulk archive pipeline.
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from gallery_delivery.models.photo import PhotoDescriptor, Volume

_WHITESPACE = re.compile(r"\s+")


class NamingMode(StrEnum):
    """How entries inside an archive are named."""

    SEQUENTIAL = "sequential"
    PRESERVE = "preserve"


class JobKind(StrEnum):
    """Independent download slots; one job of each kind may run at a time."""

    FULL = "full"
    FAVORITES = "favorites"


class JobState(StrEnum):
    """Lifecycle of an archive job."""

    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_busy(self) -> bool:
        return self in (JobState.RUNNING, JobState.FINALIZING)

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass(frozen=True, kw_only=True)
class ArchiveLabel:
    """
    Human-readable archive name.

    Attributes:
        title: Gallery title.
        suffix: Distinguishes archives of one gallery (e.g. "Vol_2", "Favoritas_1").
    """

    title: str
    suffix: str

    @property
    def filename(self) -> str:
        """``{title with whitespace runs replaced by _}_{suffix}.zip``."""
        return f"{_WHITESPACE.sub('_', self.title)}_{self.suffix}.zip"


@dataclass(frozen=True, kw_only=True)
class FetchOk:
    """A photo fetched successfully."""

    photo: PhotoDescriptor
    entry_name: str
    content: bytes


@dataclass(frozen=True, kw_only=True)
class FetchErr:
    """A photo that could not be fetched and was skipped."""

    photo: PhotoDescriptor
    reason: str
    error_type: str


FetchResult = FetchOk | FetchErr


@dataclass(frozen=True, kw_only=True)
class ArchiveSummary:
    """Per-item outcome of one archive job."""

    total: int
    succeeded: int
    failures: tuple[FetchErr, ...] = ()

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def is_partial(self) -> bool:
        return self.failed > 0


@dataclass(frozen=True, kw_only=True)
class ArchiveResult:
    """
    A finished archive.

    Attributes:
        filename: Suggested file name.
        content: ZIP bytes.
        summary: Which items made it into the archive.
    """

    filename: str
    content: bytes = field(repr=False)
    summary: ArchiveSummary

    def save(self, directory: Path | str) -> Path:
        """
        Write the archive into ``directory``.

        Args:
            directory: Destination directory, created if missing.

        Returns:
            Path of the written file.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        destination = directory / self.filename
        destination.write_bytes(self.content)
        return destination


@dataclass(frozen=True, kw_only=True)
class ConfirmationRequired:
    """
    Returned instead of starting work when a download is large.

    Attributes:
        job_id: Job to pass to ``confirm_download``; None when no job was registered.
        photo_count: Number of photos requested.
        estimated_bytes: Expected transfer size.
        reasons: Which thresholds were exceeded ("count", "size").
    """

    photo_count: int
    estimated_bytes: int
    reasons: tuple[str, ...]
    job_id: str | None = None

    @property
    def estimated_mb(self) -> float:
        return self.estimated_bytes / (1024 * 1024)


@dataclass(frozen=True, kw_only=True)
class ArchiveProgress:
    """Emitted after every settled item."""

    percent: float
    completed: int
    total: int


@dataclass(frozen=True, kw_only=True)
class ArchiveFinalizing:
    """Emitted once all items settled, before the archive is written."""

    succeeded: int
    total: int


@dataclass(frozen=True, kw_only=True)
class ArchiveCompleted:
    """Terminal event carrying the archive."""

    result: ArchiveResult


ArchiveEvent = ArchiveProgress | ArchiveFinalizing | ArchiveCompleted


@dataclass(kw_only=True)
class ArchiveJob:
    """
    One user-triggered bulk download. Lives only for the duration of the request.
    """

    kind: JobKind
    targets: tuple[PhotoDescriptor, ...]
    label: ArchiveLabel
    naming: NamingMode = NamingMode.SEQUENTIAL
    principal_id: str | None = None
    volume_index: int | None = None
    is_confirmed: bool = False
    progress: float = 0.0
    state: JobState = JobState.IDLE
    error: Exception | None = None
    result: ArchiveResult | None = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def advance(self, percent: float) -> None:
        """Raise progress; never lowers it while the job is live."""
        if self.state.is_terminal:
            return
        self.progress = min(100.0, max(self.progress, percent))


@dataclass(frozen=True, kw_only=True)
class DownloadRecord:
    """
    A finished archive download, reported to the completion hook.

    Attributes:
        job_id: Job that produced the archive.
        kind: Whole gallery or favorites.
        photo_count: Photos requested for the archive.
        suffix: Label suffix of the archive.
        filename: Archive file name.
        volume_index: Planned volume the archive covers, if any.
    """

    job_id: str
    kind: JobKind
    photo_count: int
    suffix: str
    filename: str
    volume_index: int | None = None


@dataclass(frozen=True, kw_only=True)
class VolumeChoice:
    """A volume as offered to the guest, with its expected download size."""

    volume: Volume
    estimated_bytes: int
    downloaded: bool = False

    @property
    def estimated_mb(self) -> float:
        return self.estimated_bytes / (1024 * 1024)


@dataclass(frozen=True, kw_only=True)
class VolumeChoices:
    """Volumes of the full gallery and of the favorites subset."""

    gallery: tuple[VolumeChoice, ...] = ()
    favorites: tuple[VolumeChoice, ...] = ()
    total_estimated_bytes: int = 0
