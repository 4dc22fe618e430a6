"""Credential stores and persistence of minted OAuth tokens."""

from .persistence import CredentialPersister, load_credential
from .stores import (
    CredentialStoreRegistry,
    KeyValueCredentialStore,
    NangoCredentialStore,
    create_credential_stores,
)

__all__ = [
    "CredentialPersister",
    "load_credential",
    "CredentialStoreRegistry",
    "KeyValueCredentialStore",
    "NangoCredentialStore",
    "create_credential_stores",
]
