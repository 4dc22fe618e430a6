"""OAuth flow for MCP tool servers.

Components:
    - FlowInitiator: Discovers endpoints, registers a client, builds the consent URL
    - CallbackProcessor: Validates state, exchanges the code, persists the token
    - TokenExchanger: Primary metadata-driven exchange with a direct fallback
    - PendingFlowStore: Short-lived, consume-once storage for in-flight flows
    - create_storage: Factory for key-value storage backends
    - PKCE utilities: generate_pkce_pair, compute_challenge
"""

from .callback import CallbackProcessor, CallbackResult, FlowStage
from .discovery import EndpointDiscovery
from .exchange import (
    DirectTokenExchange,
    ExchangeRequest,
    MetadataDiscoveryExchange,
    TokenExchanger,
)
from .flow_store import KeyValuePendingFlowStore, MemoryPendingFlowStore, PendingFlowStore
from .initiator import FlowInitiation, FlowInitiator
from .pkce import PKCEPair, compute_challenge, generate_pkce_pair
from .registration import ClientMetadata, DynamicClientRegistrar
from .storage import create_storage

__all__ = [
    # Flow
    "FlowInitiator",
    "FlowInitiation",
    "CallbackProcessor",
    "CallbackResult",
    "FlowStage",
    # Discovery and registration
    "EndpointDiscovery",
    "DynamicClientRegistrar",
    "ClientMetadata",
    # Token exchange
    "TokenExchanger",
    "ExchangeRequest",
    "MetadataDiscoveryExchange",
    "DirectTokenExchange",
    # Pending flows
    "PendingFlowStore",
    "MemoryPendingFlowStore",
    "KeyValuePendingFlowStore",
    # Storage
    "create_storage",
    # PKCE utilities
    "PKCEPair",
    "generate_pkce_pair",
    "compute_challenge",
]
