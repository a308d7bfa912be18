"""
Credential persistence.
"""

from gallery_delivery.storage.credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
)

__all__ = ["CredentialStore", "InMemoryCredentialStore", "JsonFileCredentialStore"]
