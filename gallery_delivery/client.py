"""
Gallery delivery client facade.

This is the main entry point for users of the library. It wires the token
cache, the source router, the archive assembler and the download orchestrator
around one shared HTTP client.
"""

import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Self

import httpx
import structlog

from gallery_delivery.api.http_client import AsyncHttpClient
from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.models.archive import (
    ArchiveJob,
    ArchiveLabel,
    ConfirmationRequired,
    JobKind,
    JobState,
    NamingMode,
    VolumeChoices,
)
from gallery_delivery.models.credential import AuthStatus, Credential, SweepReport, TokenResult
from gallery_delivery.models.photo import PhotoDescriptor
from gallery_delivery.services.archive_assembler import ArchiveAssembler
from gallery_delivery.services.download_orchestrator import (
    CompletionCallback,
    DownloadOrchestrator,
    ProgressCallback,
)
from gallery_delivery.services.source_router import SourceRouter
from gallery_delivery.services.token_manager import TokenCacheManager
from gallery_delivery.storage.credential_store import CredentialStore, InMemoryCredentialStore

logger = structlog.get_logger(__name__)


class GalleryDeliveryClient:
    """
    Async client for delivering gallery photos as downloadable archives.

    Example:
        ```python
        async with GalleryDeliveryClient(config, store=store) as client:
            choices = client.volume_choices(photos, favorite_ids)
            volume = choices.gallery[0].volume

            outcome = await client.request_download(
                volume.photos, ArchiveLabel(title="Wedding Ana", suffix="parte1")
            )
            if isinstance(outcome, ConfirmationRequired):
                outcome = await client.confirm_download(outcome.job_id)

            outcome.result.save("downloads")
        ```

    Args:
        config: Client configuration. Uses defaults if not provided.
        store: Credential store. An in-memory store is used if not provided.
        transport: Optional httpx transport for testing (mock transport).
        on_complete: Called with a record after every completed archive.
    """

    def __init__(
        self,
        config: GalleryDeliveryConfig | None = None,
        *,
        store: CredentialStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        self._config = config or GalleryDeliveryConfig()
        self._store = store if store is not None else InMemoryCredentialStore()
        self._transport = transport
        self._on_complete = on_complete

        self._http: AsyncHttpClient | None = None
        self._tokens: TokenCacheManager | None = None
        self._router: SourceRouter | None = None
        self._assembler: ArchiveAssembler | None = None
        self._orchestrator: DownloadOrchestrator | None = None

        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def __aenter__(self) -> Self:
        """Enter async context."""
        await self._ensure_initialized()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        """Exit async context."""
        await self.close()

    @property
    def config(self) -> GalleryDeliveryConfig:
        return self._config

    async def _ensure_initialized(self) -> None:
        """Ensure all components are initialized."""
        async with self._init_lock:
            if self._initialized:
                return

            self._http = AsyncHttpClient(self._config, transport=self._transport)
            await self._http.__aenter__()

            self._tokens = TokenCacheManager(self._http, self._store, self._config)
            self._router = SourceRouter(self._config)
            self._assembler = ArchiveAssembler(
                self._http, self._router, self._config, token_manager=self._tokens
            )
            self._orchestrator = DownloadOrchestrator(
                self._assembler, self._router, self._config, on_complete=self._on_complete
            )

            self._initialized = True
            logger.debug("Client initialized", profile=self._config.profile.name)

    async def close(self) -> None:
        """Close the client and release resources."""
        async with self._init_lock:
            if self._orchestrator:
                self._orchestrator.close()
                self._orchestrator = None

            if self._http:
                await self._http.__aexit__(None, None, None)
                self._http = None

            self._tokens = None
            self._router = None
            self._assembler = None
            self._initialized = False
            logger.debug("Client closed")

    async def get_valid_token(self, principal_id: str) -> str | None:
        """
        Return a usable provider access token for a principal.

        Returns:
            Access token, or None when the principal has no usable OAuth credential.

        Raises:
            ConnectionTimeoutError: If the refresh call timed out.
            RefreshFailedError: If the provider answered unexpectedly.
        """
        return await self._require_tokens().get_valid_token(principal_id)

    async def resolve_token(self, principal_id: str) -> TokenResult:
        return await self._require_tokens().resolve_token(principal_id)

    async def register_consent(
        self,
        principal_id: str,
        refresh_token: str,
        *,
        access_token: str | None = None,
        expires_in: int | None = None,
    ) -> Credential:
        """Store the tokens granted by a principal's consent."""
        return await self._require_tokens().register_consent(
            principal_id, refresh_token, access_token=access_token, expires_in=expires_in
        )

    async def sweep_credentials(
        self,
        *,
        now: datetime | None = None,
        expired_access_days: int = 7,
        inactive_days: int = 0,
        only_status: AuthStatus | None = None,
        validate_refresh_tokens: bool = False,
    ) -> SweepReport:
        """Run the credential housekeeping pass. See ``TokenCacheManager.sweep``."""
        return await self._require_tokens().sweep(
            now=now,
            expired_access_days=expired_access_days,
            inactive_days=inactive_days,
            only_status=only_status,
            validate_refresh_tokens=validate_refresh_tokens,
        )

    def volume_choices(
        self, photos: Sequence[PhotoDescriptor], favorite_ids: Iterable[str] = ()
    ) -> VolumeChoices:
        """Plan the archive volumes offered for the gallery and its favorites."""
        return self._require_orchestrator().volume_choices(photos, favorite_ids)

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
        Download photos as one archive.

        Args:
            photos: Photos to archive, typically one planned volume.
            label: Archive name.
            kind: Job slot; one job per kind may run at a time.
            naming: Entry naming mode.
            principal_id: Gallery owner, used for authenticated originals.
            volume_index: Index of the planned volume, marked downloaded on success.
            confirmed: Whether the guest already confirmed a large download.
            on_progress: Called with the job on every progress or state change.

        Returns:
            A confirmation request, the finished job, or None if ignored.

        Raises:
            ArchiveAssemblyFailedError: If the archive could not be produced.
        """
        await self._ensure_initialized()
        return await self._require_orchestrator().request_download(
            photos,
            label,
            kind=kind,
            naming=naming,
            principal_id=principal_id,
            volume_index=volume_index,
            confirmed=confirmed,
            on_progress=on_progress,
        )

    async def confirm_download(
        self, job_id: str, *, on_progress: ProgressCallback | None = None
    ) -> ArchiveJob | None:
        await self._ensure_initialized()
        return await self._require_orchestrator().confirm_download(job_id, on_progress=on_progress)

    def dismiss(self, job_id: str) -> bool:
        return self._require_orchestrator().dismiss(job_id)

    def state(self, kind: JobKind) -> JobState:
        if self._orchestrator is None:
            return JobState.IDLE
        return self._orchestrator.state(kind)

    def _require_tokens(self) -> TokenCacheManager:
        if self._tokens is None:
            raise RuntimeError("Client not initialized. Use 'async with' first.")
        return self._tokens

    def _require_orchestrator(self) -> DownloadOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("Client not initialized. Use 'async with' first.")
        return self._orchestrator
