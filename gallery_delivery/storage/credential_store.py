"""
Durable per-principal credential storage.

Stores hold whole Credential records; a write replaces the record, so a new
access token and a rotated refresh token always land together.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from gallery_delivery.exceptions import StoreError
from gallery_delivery.models.credential import Credential

logger = structlog.get_logger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """Persistence seam owned by TokenCacheManager."""

    async def get(self, principal_id: str) -> Credential | None:
        """Load the credential of a principal, or None if there is none."""
        ...

    async def save(self, credential: Credential) -> None:
        """Replace the stored record for ``credential.principal_id``."""
        ...

    async def list_all(self) -> list[Credential]:
        """Load every stored credential."""
        ...


class InMemoryCredentialStore:
    """Credential store kept in process memory. Used in tests and short-lived tools."""

    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self._records: dict[str, Credential] = {}
        for credential in credentials or []:
            self._records[credential.principal_id] = credential
        self.writes = 0

    async def get(self, principal_id: str) -> Credential | None:
        return self._records.get(principal_id)

    async def save(self, credential: Credential) -> None:
        self._records[credential.principal_id] = credential
        self.writes += 1

    async def list_all(self) -> list[Credential]:
        return list(self._records.values())


class JsonFileCredentialStore:
    """
    Credential store backed by a single JSON file.

    Writes go to a temporary file that atomically replaces the original, so a
    crash never leaves a half-written store. An asyncio lock serializes
    read-modify-write cycles within the process; file I/O runs in a worker
    thread.
    """

    def __init__(self, path: Path) -> None:
        """
        Args:
            path: Location of the JSON file; created on first write.
        """
        self._path = path
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, principal_id: str) -> Credential | None:
        records = await self._read()
        data = records.get(principal_id)
        return Credential.from_dict(data) if data is not None else None

    async def save(self, credential: Credential) -> None:
        async with self._lock:
            records = await self._read()
            records[credential.principal_id] = credential.to_dict()
            await asyncio.to_thread(self._write_atomic, records)
        logger.debug("Credential persisted", principal_id=credential.principal_id)

    async def list_all(self) -> list[Credential]:
        records = await self._read()
        return [Credential.from_dict(data) for data in records.values()]

    async def _read(self) -> dict[str, dict]:
        try:
            return await asyncio.to_thread(self._read_sync)
        except (OSError, ValueError) as e:
            msg = "Failed to read credential store"
            raise StoreError(msg, path=str(self._path)) from e

    def _read_sync(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}
        raw = self._path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            msg = "Credential store root must be an object"
            raise ValueError(msg)
        return data

    def _write_atomic(self, records: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".credentials_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            msg = "Failed to write credential store"
            raise StoreError(msg, path=str(self._path)) from e
