"""Persisting minted OAuth tokens as tool credentials.

persist() writes the token set into a credential store, upserts the tool's
credential reference and finally links the tool to it.

Upsert semantics: a second completed flow for the same tool updates the
existing reference in place (the store may change, and tokens rotate), so
a tool never has more than one OAuth credential reference.

Partial failures are not rolled back. If the token was written but the
reference could not be saved or linked, the store id and key are logged
for manual reconciliation.
"""

from __future__ import annotations

from typing import Any

import msgspec

from ..errors import CredentialStoreError, PersistenceError
from ..logging_config import get_logger
from ..models import (
    CredentialReference,
    CredentialStoreType,
    MintedTokenSet,
    ProjectScopes,
    credential_reference_id,
    credential_token_key,
)
from ..registry import CredentialReferenceRegistry, ToolRegistry
from .stores import (
    BROKER_STORE_ID,
    IN_PROCESS_STORE_ID,
    NANGO_PROVIDER,
    CredentialStore,
    CredentialStoreRegistry,
)

logger = get_logger("credentials.persistence")


def retrieval_params_for(store: CredentialStore, key: str) -> dict[str, Any]:
    """Retrieval parameters matching the store's type."""
    if store.type is CredentialStoreType.nango:
        return {
            "connectionId": key,
            "providerConfigKey": key,
            "provider": NANGO_PROVIDER,
            "authMode": "API_KEY",
        }
    return {"key": key}


def lookup_key_for(reference: CredentialReference) -> str:
    """Store lookup key for a credential reference."""
    params = reference.retrieval_params
    if reference.type is CredentialStoreType.nango:
        return msgspec.json.encode(
            {
                "connectionId": params["connectionId"],
                "providerConfigKey": params["providerConfigKey"],
            }
        ).decode()
    return params["key"]


class CredentialPersister:
    """Stores tokens and links them to tools.

    Args:
        stores: Registered credential stores
        references: Credential reference registry
        tools: Tool registry
        broker_enabled: True if the broker's secret key is configured
    """

    def __init__(
        self,
        stores: CredentialStoreRegistry,
        references: CredentialReferenceRegistry,
        tools: ToolRegistry,
        *,
        broker_enabled: bool,
    ) -> None:
        self._stores = stores
        self._references = references
        self._tools = tools
        self._broker_enabled = broker_enabled

    async def persist(
        self,
        *,
        tool_id: str,
        tenant_id: str,
        project_id: str,
        token_set: MintedTokenSet,
    ) -> CredentialReference:
        """Store a token set for a tool and link the credential reference.

        Returns:
            The created or updated CredentialReference

        Raises:
            PersistenceError: No store available, or a write/upsert/link failed
        """
        scopes = ProjectScopes(tenant_id=tenant_id, project_id=project_id)
        key = credential_token_key(tool_id)
        store = await self._write_token(key, msgspec.json.encode(token_set).decode())

        reference = CredentialReference(
            id=credential_reference_id(tool_id),
            type=store.type,
            credential_store_id=store.id,
            retrieval_params=retrieval_params_for(store, key),
            tenant_id=tenant_id,
            project_id=project_id,
        )

        try:
            saved = await self._upsert_reference(scopes, reference)
            tool = await self._tools.update_tool(
                scopes, tool_id, credential_reference_id=saved.id
            )
        except Exception as e:
            logger.error(
                "Credential stored but not linked: tool_id=%s, store_id=%s, key=%s, error=%s",
                tool_id,
                store.id,
                key,
                e,
            )
            raise PersistenceError(
                f"Failed to save credential '{reference.id}' to database"
            ) from e

        if tool is None:
            logger.error(
                "Credential stored but tool is gone: tool_id=%s, store_id=%s, key=%s",
                tool_id,
                store.id,
                key,
            )
            raise PersistenceError(f"Tool {tool_id} not found while linking credential")

        logger.info(
            "Credential linked: tool_id=%s, credential_id=%s, store_id=%s",
            tool_id,
            saved.id,
            store.id,
        )
        return saved

    async def _write_token(self, key: str, value: str) -> CredentialStore:
        in_process = self._stores.get(IN_PROCESS_STORE_ID)
        if in_process is not None:
            try:
                await in_process.set(key, value)
                return in_process
            except CredentialStoreError as e:
                logger.warning(
                    "In-process credential store failed, trying broker: %s", e
                )

        broker = self._stores.get(BROKER_STORE_ID) if self._broker_enabled else None
        if broker is None:
            raise PersistenceError("No credential store found")

        try:
            await broker.set(key, value)
        except CredentialStoreError as e:
            raise PersistenceError(f"Failed to store credential: {e}") from e
        return broker

    async def _upsert_reference(
        self, scopes: ProjectScopes, reference: CredentialReference
    ) -> CredentialReference:
        existing = await self._references.find_credential_reference(scopes, reference.id)
        if existing is None:
            logger.debug("Creating credential reference: id=%s", reference.id)
            return await self._references.create_credential_reference(reference)

        logger.debug("Updating credential reference in place: id=%s", reference.id)
        return await self._references.update_credential_reference(reference)


async def load_credential(
    stores: CredentialStoreRegistry, reference: CredentialReference
) -> MintedTokenSet | None:
    """Read a tool's token set back through its credential reference."""
    store = stores.get(reference.credential_store_id)
    if store is None:
        logger.warning(
            "Credential store not registered: store_id=%s", reference.credential_store_id
        )
        return None

    value = await store.get(lookup_key_for(reference))
    if value is None:
        return None
    return msgspec.json.decode(value)
