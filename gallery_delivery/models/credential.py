"""
Provider credential domain models.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Self


class AuthStatus(StrEnum):
    """Authorization status of a principal's provider credential."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ProviderErrorCode(StrEnum):
    """Error codes returned by the provider token endpoint."""

    INVALID_GRANT = "invalid_grant"
    INVALID_REQUEST = "invalid_request"
    REFRESH_TOKEN_ALREADY_USED = "refresh_token_already_used"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> Self | None:
        """Map a raw ``error`` field to a known code, ``UNKNOWN`` or None when absent."""
        if raw is None or raw == "":
            return None
        try:
            return cls(str(raw))
        except ValueError:
            return cls.UNKNOWN

    @property
    def revokes_credential(self) -> bool:
        """Whether this code means the refresh token can never be used again."""
        return self is not ProviderErrorCode.UNKNOWN


class TokenOutcome(StrEnum):
    """How a token lookup was resolved."""

    CACHED = "cached"
    REFRESHED = "refreshed"
    MISSING = "missing"
    REVOKED = "revoked"


@dataclass(frozen=True, kw_only=True)
class Credential:
    """
    OAuth credential of one principal (photographer account).

    Attributes:
        principal_id: Account the credential belongs to.
        refresh_token: Long-lived token used to obtain access tokens.
        access_token: Cached short-lived bearer token.
        expires_at: Absolute expiry of ``access_token`` (timezone-aware).
        status: Authorization status.
        updated_at: Last time the record was written.
    """

    principal_id: str
    refresh_token: str | None = None
    access_token: str | None = None
    expires_at: datetime | None = None
    status: AuthStatus = AuthStatus.ACTIVE
    updated_at: datetime | None = None

    def has_fresh_access_token(self, now: datetime, margin: timedelta) -> bool:
        """Check whether the cached access token outlives ``now + margin``."""
        if self.access_token is None or self.expires_at is None:
            return False
        return self.expires_at > now + margin

    def to_dict(self) -> dict[str, Any]:
        return {
            "principal_id": self.principal_id,
            "refresh_token": self.refresh_token,
            "access_token": self.access_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "status": str(self.status),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        expires_at = data.get("expires_at")
        updated_at = data.get("updated_at")
        return cls(
            principal_id=data["principal_id"],
            refresh_token=data.get("refresh_token"),
            access_token=data.get("access_token"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            status=AuthStatus(data.get("status", AuthStatus.ACTIVE)),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass(frozen=True, kw_only=True)
class TokenResponse:
    """
    Token endpoint response, classified once at the HTTP boundary.

    Attributes:
        access_token: New access token, if issued.
        expires_in: Lifetime of the access token in seconds.
        refresh_token: Rotated refresh token, if the provider issued one.
        error: Provider error code, if any.
        status_code: HTTP status of the final attempt.
    """

    access_token: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    error: ProviderErrorCode | None = None
    status_code: int = 200

    @classmethod
    def from_payload(cls, payload: Any, *, status_code: int = 200) -> Self:
        """Build from a decoded JSON body; anything that is not an object counts as empty."""
        if not isinstance(payload, dict):
            payload = {}
        expires_in = payload.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_in = None
        return cls(
            access_token=payload.get("access_token") or None,
            expires_in=expires_in,
            refresh_token=payload.get("refresh_token") or None,
            error=ProviderErrorCode.parse(payload.get("error")),
            status_code=status_code,
        )


@dataclass(frozen=True, kw_only=True)
class TokenResult:
    """Result of a token lookup: the token, if any, and how it was obtained."""

    outcome: TokenOutcome
    access_token: str | None = None

    @property
    def is_available(self) -> bool:
        return self.access_token is not None


@dataclass(frozen=True, kw_only=True)
class SweepReport:
    """
    Summary of a credential housekeeping pass.

    Attributes:
        scanned: Credentials considered after status filtering.
        cleaned: Principals whose record was changed, including revocations found
            by validation.
        expired: Principals newly marked expired for inactivity.
        validated: Principals whose refresh token the provider accepted.
        failed: Principals whose validation could not complete; left unchanged.
    """

    scanned: int = 0
    cleaned: tuple[str, ...] = ()
    expired: tuple[str, ...] = ()
    validated: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
