"""Shared fixtures: a fake MCP tool server and its authorization server."""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from key_value.aio.stores.memory import MemoryStore

from mcp_tool_oauth.config import OAuthSettings
from mcp_tool_oauth.credentials.stores import (
    CredentialStoreRegistry,
    KeyValueCredentialStore,
)
from mcp_tool_oauth.models import Tool
from mcp_tool_oauth.oauth.flow_store import MemoryPendingFlowStore
from mcp_tool_oauth.registry import (
    InMemoryCredentialReferenceRegistry,
    InMemoryToolRegistry,
)
from mcp_tool_oauth.services import OAuthServices, build_services

TOOL_SERVER_URL = "https://tool.example.com/mcp"
AUTH_SERVER = "https://auth.example.com"
RESOURCE_METADATA_URL = "https://tool.example.com/.well-known/oauth-protected-resource"


class FakeProvider:
    """Routes httpx requests to a scripted tool server + authorization server.

    Attributes are mutated by tests to simulate provider behavior.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.challenge = True
        self.pkce_methods = ["S256"]
        self.registration_status = 201
        self.issuer = AUTH_SERVER
        self.token_status = 200
        self.token_response: dict[str, Any] = {
            "access_token": "access-123",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh-456",
        }

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{AUTH_SERVER}/authorize",
            "token_endpoint": f"{AUTH_SERVER}/token",
            "registration_endpoint": f"{AUTH_SERVER}/register",
            "code_challenge_methods_supported": self.pkce_methods,
        }

    def token_requests(self) -> list[dict[str, list[str]]]:
        return [
            parse_qs(r.content.decode())
            for r in self.requests
            if r.method == "POST" and str(r.url) == f"{AUTH_SERVER}/token"
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]

        if request.method == "POST" and url == TOOL_SERVER_URL:
            if not self.challenge:
                return httpx.Response(200, json={})
            return httpx.Response(
                401,
                headers={
                    "WWW-Authenticate": f'Bearer resource_metadata="{RESOURCE_METADATA_URL}"'
                },
            )
        if url == RESOURCE_METADATA_URL:
            return httpx.Response(
                200,
                json={"resource": TOOL_SERVER_URL, "authorization_servers": [AUTH_SERVER]},
            )
        if url == f"{AUTH_SERVER}/.well-known/oauth-authorization-server":
            return httpx.Response(200, json=self.metadata)
        if url == f"{AUTH_SERVER}/register":
            if self.registration_status >= 400:
                return httpx.Response(self.registration_status, json={"error": "denied"})
            return httpx.Response(
                self.registration_status, json={"client_id": "registered-client"}
            )
        if url == f"{AUTH_SERVER}/token":
            if self.token_status >= 400:
                return httpx.Response(
                    self.token_status,
                    json={"error": "invalid_grant", "error_description": "bad code"},
                )
            return httpx.Response(self.token_status, json=self.token_response)

        return httpx.Response(404)


def make_tool(**overrides: Any) -> Tool:
    values: dict[str, Any] = {
        "id": "tool-1",
        "name": "Example Tool",
        "server_url": TOOL_SERVER_URL,
        "tenant_id": "tenant-1",
        "project_id": "project-1",
    }
    values.update(overrides)
    return Tool(**values)


@pytest.fixture
def settings() -> OAuthSettings:
    return OAuthSettings(base_url="https://app.example.com")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transport(provider: FakeProvider) -> httpx.MockTransport:
    return httpx.MockTransport(provider)


@pytest.fixture
def services(settings: OAuthSettings, transport: httpx.MockTransport) -> OAuthServices:
    """Fully wired services against the fake provider, with in-memory stores."""
    storage = MemoryStore()
    return build_services(
        settings,
        transport=transport,
        storage=storage,
        flow_store=MemoryPendingFlowStore(ttl_seconds=settings.flow_ttl_seconds),
        tools=InMemoryToolRegistry([make_tool()]),
        credential_references=InMemoryCredentialReferenceRegistry(),
        credential_stores=CredentialStoreRegistry([KeyValueCredentialStore(storage)]),
    )
