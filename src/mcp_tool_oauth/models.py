"""Data model for tool OAuth flows and credential references."""

from __future__ import annotations

import enum
from typing import Any

import msgspec

# Token response from the provider. Kept opaque and stored verbatim.
MintedTokenSet = dict[str, Any]


class CredentialStoreType(str, enum.Enum):
    """Kind of backing store a credential reference points into."""

    # In-process secret store
    memory = "memory"
    # External secret broker
    nango = "nango"


class ProjectScopes(msgspec.Struct, kw_only=True, frozen=True):
    """Tenant/project scope for registry lookups."""

    tenant_id: str
    project_id: str


class Tool(msgspec.Struct, kw_only=True):
    """An MCP tool server registered in a project."""

    id: str
    name: str
    server_url: str
    tenant_id: str
    project_id: str
    credential_reference_id: str | None = None

    @property
    def scopes(self) -> ProjectScopes:
        return ProjectScopes(tenant_id=self.tenant_id, project_id=self.project_id)


class OAuthServerConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Authorization server endpoints discovered for a tool server."""

    authorization_url: str
    token_url: str
    registration_url: str | None = None
    supports_dynamic_registration: bool = False


class PendingFlow(msgspec.Struct, kw_only=True, frozen=True):
    """Server-side context of an authorization attempt awaiting its callback."""

    code_verifier: str
    tool_id: str
    tenant_id: str
    project_id: str
    client_id: str
    redirect_uri: str

    @property
    def scopes(self) -> ProjectScopes:
        return ProjectScopes(tenant_id=self.tenant_id, project_id=self.project_id)


class CredentialReference(msgspec.Struct, kw_only=True):
    """Pointer from a tool to a secret held in a credential store."""

    id: str
    type: CredentialStoreType
    credential_store_id: str
    retrieval_params: dict[str, Any]
    tenant_id: str
    project_id: str


def credential_token_key(tool_id: str) -> str:
    """Secret store key for a tool's OAuth token."""
    return f"oauth_token_{tool_id}"


def credential_reference_id(tool_id: str) -> str:
    """Deterministic credential reference id for a tool."""
    return f"oauth-{tool_id}"
