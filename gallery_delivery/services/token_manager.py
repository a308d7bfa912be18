"""
Provider access-token cache.

Hands out a valid OAuth access token per principal, refreshing it through the
provider token endpoint when the cached one is about to expire.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import structlog

from gallery_delivery.api.endpoints.oauth import refresh_access_token
from gallery_delivery.api.http_client import AsyncHttpClient
from gallery_delivery.config import GalleryDeliveryConfig
from gallery_delivery.core.rate_limiter import SlidingWindowRateLimiter
from gallery_delivery.core.single_flight import SingleFlight
from gallery_delivery.exceptions import (
    CredentialError,
    CredentialMissingError,
    CredentialRevokedError,
    NetworkError,
    RefreshFailedError,
)
from gallery_delivery.models.credential import (
    AuthStatus,
    Credential,
    ProviderErrorCode,
    SweepReport,
    TokenOutcome,
    TokenResult,
)
from gallery_delivery.storage.credential_store import CredentialStore

logger = structlog.get_logger(__name__)

# Lifetime assumed when a successful token response omits ``expires_in``.
DEFAULT_EXPIRES_IN = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCacheManager:
    """
    Caches and refreshes one provider access token per principal.

    The credential store is written only from here. Expected conditions (no
    refresh token on file, token revoked by the provider) resolve to a None
    token; callers then fall back to a non-OAuth access strategy.

    Concurrency:
    - Concurrent cache misses for the same principal share one refresh call
      (single-flight keyed by principal ID).
    - Refresh calls across all principals are throttled by a sliding-window
      rate limiter.
    """

    def __init__(
        self,
        http: AsyncHttpClient,
        store: CredentialStore,
        config: GalleryDeliveryConfig,
        *,
        clock: Callable[[], datetime] = _utcnow,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            http: HTTP client for the token endpoint.
            store: Durable credential store.
            config: Client configuration.
            clock: Returns the current timezone-aware time, injectable for tests.
            rate_limiter: Limiter for refresh calls; built from config if omitted.
            sleep: Sleep coroutine used for retry backoff.
        """
        self._http = http
        self._store = store
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._margin = timedelta(seconds=config.refresh_margin)
        self._limiter = rate_limiter or SlidingWindowRateLimiter(
            config.token_requests_per_window, config.token_rate_window
        )
        self._flight: SingleFlight[TokenResult] = SingleFlight()

    async def get_valid_token(self, principal_id: str) -> str | None:
        """
        Return a usable access token for a principal.

        Args:
            principal_id: Photographer account.

        Returns:
            Access token, or None when no OAuth path is available (no refresh
            token on file, or the provider revoked it).

        Raises:
            ConnectionTimeoutError: If the refresh call exceeded its time bound.
            NetworkError: If the token endpoint could not be reached.
            RefreshFailedError: If the provider answered without a token or a known error.
        """
        result = await self.resolve_token(principal_id)
        return result.access_token

    async def resolve_token(self, principal_id: str) -> TokenResult:
        """Like ``get_valid_token`` but also reports how the token was obtained."""
        credential = await self._store.get(principal_id)
        if (cached := self._from_cache(credential)) is not None:
            return cached
        if credential is None or credential.refresh_token is None:
            return self._unavailable(principal_id, credential)

        return await self._flight.do(principal_id, lambda: self._refresh(principal_id))

    async def require_token(self, principal_id: str) -> str:
        """
        Return an access token or raise when none can be obtained.

        Raises:
            CredentialMissingError: If there is no refresh token on file.
            CredentialRevokedError: If the provider rejected the refresh token.
        """
        result = await self.resolve_token(principal_id)
        if result.outcome == TokenOutcome.REVOKED:
            msg = "Provider access was revoked, reauthorization required"
            raise CredentialRevokedError(msg, principal_id=principal_id)
        if result.access_token is None:
            msg = "No provider credential on file"
            raise CredentialMissingError(msg, principal_id=principal_id)
        return result.access_token

    async def register_consent(
        self,
        principal_id: str,
        refresh_token: str,
        *,
        access_token: str | None = None,
        expires_in: int | None = None,
    ) -> Credential:
        """
        Store the tokens granted when a principal consents to provider access.

        Replaces any previous credential, including a revoked one.

        Args:
            principal_id: Photographer account.
            refresh_token: Refresh token from the consent exchange.
            access_token: Access token from the same exchange, if any.
            expires_in: Lifetime of ``access_token`` in seconds.

        Returns:
            The stored credential.
        """
        if not refresh_token:
            msg = "refresh_token is required"
            raise ValueError(msg)

        now = self._clock()
        expires_at = None
        if access_token is not None and expires_in is not None:
            expires_at = now + timedelta(seconds=expires_in)

        credential = Credential(
            principal_id=principal_id,
            refresh_token=refresh_token,
            access_token=access_token if expires_at is not None else None,
            expires_at=expires_at,
            status=AuthStatus.ACTIVE,
            updated_at=now,
        )
        await self._store.save(credential)
        logger.info("Provider consent registered", principal_id=principal_id)
        return credential

    async def sweep(
        self,
        *,
        now: datetime | None = None,
        expired_access_days: int = 7,
        inactive_days: int = 0,
        only_status: AuthStatus | None = None,
        validate_refresh_tokens: bool = False,
    ) -> SweepReport:
        """
        Housekeeping pass over all stored credentials.

        - Access tokens that expired more than ``expired_access_days`` ago are dropped.
        - Credentials marked expired or revoked lose any remaining tokens.
        - With ``inactive_days`` > 0, active credentials not written for that many
          days lose their tokens and are marked expired.
        - With ``validate_refresh_tokens``, every refresh token left untouched by
          the rules above is checked against the provider through a forced
          refresh. Rejected tokens revoke the credential; accepted ones store
          the new access token.

        Records are never deleted. Principals with a refresh in flight are skipped.
        A value of 0 disables the corresponding age rule. ``only_status``
        restricts the pass to credentials with that status.
        """
        now = now or self._clock()
        credentials = await self._store.list_all()
        if only_status is not None:
            credentials = [c for c in credentials if c.status == only_status]
        cleaned: list[str] = []
        expired: list[str] = []
        validated: list[str] = []
        failed: list[str] = []

        for credential in credentials:
            principal_id = credential.principal_id
            if self._flight.in_flight(principal_id):
                continue
            updated = self._swept(credential, now, expired_access_days, inactive_days)
            if updated != credential:
                await self._store.save(updated)
                cleaned.append(principal_id)
                if credential.status == AuthStatus.ACTIVE and updated.status == AuthStatus.EXPIRED:
                    expired.append(principal_id)
                continue
            if not validate_refresh_tokens or credential.refresh_token is None:
                continue

            outcome = await self._validate(principal_id)
            if outcome == TokenOutcome.REFRESHED:
                validated.append(principal_id)
            elif outcome == TokenOutcome.REVOKED:
                cleaned.append(principal_id)
            elif outcome is None:
                failed.append(principal_id)

        logger.info(
            "Credential sweep finished",
            scanned=len(credentials),
            cleaned=len(cleaned),
            expired=len(expired),
            validated=len(validated),
            failed=len(failed),
        )
        return SweepReport(
            scanned=len(credentials),
            cleaned=tuple(cleaned),
            expired=tuple(expired),
            validated=tuple(validated),
            failed=tuple(failed),
        )

    async def _validate(self, principal_id: str) -> TokenOutcome | None:
        try:
            result = await self._flight.do(
                principal_id, lambda: self._refresh(principal_id, force=True)
            )
        except (CredentialError, NetworkError) as e:
            logger.warning(
                "Refresh token validation failed",
                principal_id=principal_id,
                error_type=type(e).__name__,
            )
            return None
        return result.outcome

    @staticmethod
    def _swept(
        credential: Credential,
        now: datetime,
        expired_access_days: int,
        inactive_days: int,
    ) -> Credential:
        updated = credential

        if (
            expired_access_days > 0
            and credential.expires_at is not None
            and credential.expires_at < now - timedelta(days=expired_access_days)
        ):
            updated = replace(updated, access_token=None, expires_at=None)

        if credential.status in (AuthStatus.EXPIRED, AuthStatus.REVOKED):
            updated = replace(updated, refresh_token=None, access_token=None, expires_at=None)
        elif (
            inactive_days > 0
            and credential.updated_at is not None
            and credential.updated_at < now - timedelta(days=inactive_days)
        ):
            updated = replace(
                updated,
                refresh_token=None,
                access_token=None,
                expires_at=None,
                status=AuthStatus.EXPIRED,
            )

        if updated != credential:
            updated = replace(updated, updated_at=now)
        return updated

    def _from_cache(self, credential: Credential | None) -> TokenResult | None:
        if credential is None or credential.status != AuthStatus.ACTIVE:
            return None
        if not credential.has_fresh_access_token(self._clock(), self._margin):
            return None
        return TokenResult(outcome=TokenOutcome.CACHED, access_token=credential.access_token)

    @staticmethod
    def _unavailable(principal_id: str, credential: Credential | None) -> TokenResult:
        if credential is not None and credential.status == AuthStatus.REVOKED:
            logger.info("Provider credential revoked", principal_id=principal_id)
            return TokenResult(outcome=TokenOutcome.REVOKED)
        logger.info("No refresh token on file", principal_id=principal_id)
        return TokenResult(outcome=TokenOutcome.MISSING)

    async def _refresh(self, principal_id: str, *, force: bool = False) -> TokenResult:
        # Re-read inside the flight: a refresh that settled just before may have stored a token.
        credential = await self._store.get(principal_id)
        if not force and (cached := self._from_cache(credential)) is not None:
            logger.debug("Token already refreshed by another caller", principal_id=principal_id)
            return cached
        if credential is None or credential.refresh_token is None:
            return self._unavailable(principal_id, credential)

        await self._limiter.acquire()
        logger.info("Refreshing provider access token", principal_id=principal_id)

        response = await refresh_access_token(
            self._http,
            token_url=self._config.token_url,
            client_id=self._config.client_id,
            client_secret=self._config.client_secret,
            refresh_token=credential.refresh_token,
            timeout=self._config.token_timeout,
            max_retries=self._config.max_retries,
            retry_delay=self._config.retry_delay,
            sleep=self._sleep,
        )

        if response.error is not None and response.error.revokes_credential:
            await self._revoke(credential, response.error)
            return TokenResult(outcome=TokenOutcome.REVOKED)

        if response.access_token is None:
            logger.error(
                "Token refresh returned no access token",
                principal_id=principal_id,
                status_code=response.status_code,
                error=response.error,
            )
            msg = "Provider did not return an access token"
            raise RefreshFailedError(msg, principal_id=principal_id)

        expires_in = response.expires_in
        if expires_in is None:
            logger.warning(
                "Token response has no expiry, assuming default lifetime",
                principal_id=principal_id,
                expires_in=DEFAULT_EXPIRES_IN,
            )
            expires_in = DEFAULT_EXPIRES_IN

        now = self._clock()
        updated = replace(
            credential,
            access_token=response.access_token,
            expires_at=now + timedelta(seconds=expires_in),
            refresh_token=response.refresh_token or credential.refresh_token,
            status=AuthStatus.ACTIVE,
            updated_at=now,
        )
        await self._persist(updated, "Failed to persist refreshed token")
        logger.info(
            "Access token refreshed",
            principal_id=principal_id,
            expires_in=expires_in,
            rotated=response.refresh_token is not None,
        )
        return TokenResult(outcome=TokenOutcome.REFRESHED, access_token=response.access_token)

    async def _revoke(self, credential: Credential, code: ProviderErrorCode) -> None:
        logger.warning(
            "Provider rejected refresh token",
            principal_id=credential.principal_id,
            error=code,
        )
        revoked = replace(
            credential,
            refresh_token=None,
            access_token=None,
            expires_at=None,
            status=AuthStatus.REVOKED,
            updated_at=self._clock(),
        )
        await self._persist(revoked, "Failed to persist revoked credential")

    async def _persist(self, credential: Credential, failure_event: str) -> None:
        try:
            await self._store.save(credential)
        except Exception as e:
            logger.error(
                failure_event,
                principal_id=credential.principal_id,
                error_type=type(e).__name__,
            )
