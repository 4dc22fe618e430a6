"""Construction of the OAuth flow services.

build_services() wires one shared HTTP client, the key-value storage
backend, the pending flow store, registries and credential stores into the
initiator and callback processor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import msgspec

from .config import OAuthSettings
from .credentials.persistence import CredentialPersister
from .credentials.stores import CredentialStoreRegistry, create_credential_stores
from .logging_config import get_logger
from .oauth.callback import CallbackProcessor
from .oauth.discovery import EndpointDiscovery
from .oauth.exchange import DirectTokenExchange, MetadataDiscoveryExchange, TokenExchanger
from .oauth.flow_store import (
    KeyValuePendingFlowStore,
    MemoryPendingFlowStore,
    PendingFlowStore,
)
from .oauth.initiator import FlowInitiator
from .oauth.registration import DynamicClientRegistrar
from .oauth.storage import create_storage, get_storage_type
from .registry import (
    CredentialReferenceRegistry,
    InMemoryCredentialReferenceRegistry,
    InMemoryToolRegistry,
    ToolRegistry,
)

if TYPE_CHECKING:
    from key_value.aio.protocols import AsyncKeyValue

logger = get_logger("services")


class OAuthServices(msgspec.Struct, kw_only=True):
    """Everything the HTTP routes and MCP tools need."""

    settings: OAuthSettings
    http_client: httpx.AsyncClient
    flow_store: PendingFlowStore
    tools: ToolRegistry
    credential_references: CredentialReferenceRegistry
    credential_stores: CredentialStoreRegistry
    initiator: FlowInitiator
    callback_processor: CallbackProcessor

    async def aclose(self) -> None:
        """Release timers and network resources."""
        if isinstance(self.flow_store, MemoryPendingFlowStore):
            self.flow_store.close()
        await self.http_client.aclose()


def create_flow_store(
    settings: OAuthSettings, storage: "AsyncKeyValue", storage_type: str
) -> PendingFlowStore:
    """Pending flows follow the storage type: shared when Redis, local otherwise."""
    if storage_type == "redis":
        return KeyValuePendingFlowStore(storage, ttl_seconds=settings.flow_ttl_seconds)
    return MemoryPendingFlowStore(ttl_seconds=settings.flow_ttl_seconds)


def build_services(
    settings: OAuthSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    storage: "AsyncKeyValue | None" = None,
    flow_store: PendingFlowStore | None = None,
    tools: ToolRegistry | None = None,
    credential_references: CredentialReferenceRegistry | None = None,
    credential_stores: CredentialStoreRegistry | None = None,
) -> OAuthServices:
    """Assemble the OAuth services.

    Every collaborator can be injected; anything omitted is built from
    settings and the environment.

    Args:
        settings: OAuth settings
        http_client: Shared async HTTP client
        transport: HTTP transport for the shared and authlib clients
        storage: Key-value backend (default: create_storage())
        flow_store: Pending flow store
        tools: Tool registry (default: in-memory, seeded from TOOLS_FILE)
        credential_references: Credential reference registry
        credential_stores: Credential store registry
    """
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.http_timeout, transport=transport)

    storage_type = get_storage_type()
    if storage is None:
        storage = create_storage()
    if flow_store is None:
        flow_store = create_flow_store(settings, storage, storage_type)

    if tools is None:
        tools = (
            InMemoryToolRegistry.from_file(settings.tools_file)
            if settings.tools_file
            else InMemoryToolRegistry()
        )
    if credential_references is None:
        credential_references = InMemoryCredentialReferenceRegistry()
    if credential_stores is None:
        credential_stores = create_credential_stores(settings, storage, http_client)

    discovery = EndpointDiscovery(http_client)
    initiator = FlowInitiator(
        settings,
        discover=discovery.discover,
        registrar=DynamicClientRegistrar(http_client),
        flow_store=flow_store,
    )
    exchanger = TokenExchanger(
        [
            MetadataDiscoveryExchange(
                http_client, timeout=settings.http_timeout, transport=transport
            ),
            DirectTokenExchange(http_client),
        ]
    )
    persister = CredentialPersister(
        credential_stores,
        credential_references,
        tools,
        broker_enabled=settings.broker_enabled,
    )
    callback_processor = CallbackProcessor(
        flow_store,
        tools,
        discover=discovery.discover,
        exchanger=exchanger,
        persister=persister,
    )

    logger.debug("OAuth services built: storage_type=%s", storage_type)
    return OAuthServices(
        settings=settings,
        http_client=http_client,
        flow_store=flow_store,
        tools=tools,
        credential_references=credential_references,
        credential_stores=credential_stores,
        initiator=initiator,
        callback_processor=callback_processor,
    )
