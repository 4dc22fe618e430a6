"""Tests for the flow initiator."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from mcp_tool_oauth.config import OAuthSettings
from mcp_tool_oauth.errors import ConfigurationError, FlowTokenCollisionError
from mcp_tool_oauth.models import OAuthServerConfig
from mcp_tool_oauth.oauth.discovery import EndpointDiscovery
from mcp_tool_oauth.oauth.flow_store import MemoryPendingFlowStore
from mcp_tool_oauth.oauth.initiator import (
    FlowInitiator,
    build_authorization_url,
    new_flow_token,
)
from mcp_tool_oauth.oauth.pkce import compute_challenge
from mcp_tool_oauth.oauth.registration import DynamicClientRegistrar

from .conftest import AUTH_SERVER, TOOL_SERVER_URL


def query_of(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def make_initiator(settings, client, flow_store, **kwargs) -> FlowInitiator:
    return FlowInitiator(
        settings,
        discover=EndpointDiscovery(client).discover,
        registrar=DynamicClientRegistrar(client),
        flow_store=flow_store,
        **kwargs,
    )


class TestBuildAuthorizationUrl:
    """Tests for build_authorization_url."""

    def test_preserves_existing_query(self):
        """Test that parameters already on the endpoint are kept."""
        config = OAuthServerConfig(
            authorization_url="https://auth.example.com/authorize?audience=api",
            token_url="https://auth.example.com/token",
        )
        url = build_authorization_url(
            config,
            client_id="client",
            redirect_uri="https://app/cb",
            state="state-1",
            code_challenge="challenge",
            resource=TOOL_SERVER_URL,
        )

        assert url.startswith("https://auth.example.com/authorize?")
        params = query_of(url)
        assert params["audience"] == "api"
        assert params["response_type"] == "code"
        assert params["code_challenge_method"] == "S256"
        assert params["resource"] == TOOL_SERVER_URL

    def test_new_flow_token_is_random(self):
        tokens = {new_flow_token() for _ in range(20)}
        assert len(tokens) == 20
        assert all(len(t) >= 43 for t in tokens)


class TestFlowInitiator:
    """Tests for FlowInitiator.initiate()."""

    @pytest.mark.asyncio
    async def test_initiate_with_dynamic_registration(self, settings, provider, transport):
        """Test the happy path: discovery, registration and a pending flow."""
        flow_store = MemoryPendingFlowStore()
        async with httpx.AsyncClient(transport=transport) as client:
            initiation = await make_initiator(settings, client, flow_store).initiate(
                tool_server_url=TOOL_SERVER_URL,
                tool_id="tool-1",
                tenant_id="tenant-1",
                project_id="project-1",
            )

        assert initiation.redirect_url.startswith(f"{AUTH_SERVER}/authorize?")
        params = query_of(initiation.redirect_url)
        assert params["response_type"] == "code"
        assert params["client_id"] == "registered-client"
        assert params["redirect_uri"] == "https://app.example.com/oauth/callback"
        assert params["state"] == initiation.flow_token
        assert params["code_challenge_method"] == "S256"
        assert params["resource"] == TOOL_SERVER_URL

        flow = await flow_store.consume(initiation.flow_token)
        assert flow is not None
        assert flow.tool_id == "tool-1"
        assert flow.tenant_id == "tenant-1"
        assert flow.project_id == "project-1"
        assert flow.client_id == "registered-client"
        assert flow.redirect_uri == "https://app.example.com/oauth/callback"
        assert compute_challenge(flow.code_verifier) == params["code_challenge"]

    @pytest.mark.asyncio
    async def test_flow_token_not_derived_from_tool_id(self, settings, transport):
        """Test that two flows for the same tool get different tokens."""
        flow_store = MemoryPendingFlowStore()
        async with httpx.AsyncClient(transport=transport) as client:
            initiator = make_initiator(settings, client, flow_store)
            first = await initiator.initiate(
                tool_server_url=TOOL_SERVER_URL,
                tool_id="tool-1",
                tenant_id="tenant-1",
                project_id="project-1",
            )
            second = await initiator.initiate(
                tool_server_url=TOOL_SERVER_URL,
                tool_id="tool-1",
                tenant_id="tenant-1",
                project_id="project-1",
            )

        assert first.flow_token != second.flow_token
        assert "tool-1" not in first.flow_token
        assert len(flow_store) == 2
        flow_store.close()

    @pytest.mark.asyncio
    async def test_registration_failure_uses_default_client_id(
        self, settings, provider, transport
    ):
        """Test that a rejected registration falls back to the default client id."""
        provider.registration_status = 400
        flow_store = MemoryPendingFlowStore()
        async with httpx.AsyncClient(transport=transport) as client:
            initiation = await make_initiator(settings, client, flow_store).initiate(
                tool_server_url=TOOL_SERVER_URL,
                tool_id="tool-1",
                tenant_id="tenant-1",
                project_id="project-1",
            )

        assert query_of(initiation.redirect_url)["client_id"] == "mcp-client"
        flow = await flow_store.consume(initiation.flow_token)
        assert flow.client_id == "mcp-client"

    @pytest.mark.asyncio
    async def test_redirect_base_url_override(self, settings, transport):
        """Test that a redirect base URL override changes the redirect URI."""
        flow_store = MemoryPendingFlowStore()
        async with httpx.AsyncClient(transport=transport) as client:
            initiation = await make_initiator(settings, client, flow_store).initiate(
                tool_server_url=TOOL_SERVER_URL,
                tool_id="tool-1",
                tenant_id="tenant-1",
                project_id="project-1",
                redirect_base_url="https://other.example.com/",
            )

        params = query_of(initiation.redirect_url)
        assert params["redirect_uri"] == "https://other.example.com/oauth/callback"
        flow = await flow_store.consume(initiation.flow_token)
        assert flow.redirect_uri == "https://other.example.com/oauth/callback"

    @pytest.mark.asyncio
    async def test_oauth_not_supported(self, settings, provider, transport):
        """Test that missing PKCE support raises ConfigurationError and stores nothing."""
        provider.pkce_methods = []
        flow_store = MemoryPendingFlowStore()
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ConfigurationError, match="OAuth not supported"):
                await make_initiator(settings, client, flow_store).initiate(
                    tool_server_url=TOOL_SERVER_URL,
                    tool_id="tool-1",
                    tenant_id="tenant-1",
                    project_id="project-1",
                )

        assert len(flow_store) == 0

    @pytest.mark.asyncio
    async def test_flow_token_collision_fails_closed(self, transport):
        """Test that a reused flow token is rejected."""
        settings = OAuthSettings(base_url="https://app.example.com")
        flow_store = MemoryPendingFlowStore()
        async with httpx.AsyncClient(transport=transport) as client:
            initiator = make_initiator(
                settings, client, flow_store, token_factory=lambda: "fixed-token"
            )
            await initiator.initiate(
                tool_server_url=TOOL_SERVER_URL,
                tool_id="tool-1",
                tenant_id="tenant-1",
                project_id="project-1",
            )
            with pytest.raises(FlowTokenCollisionError):
                await initiator.initiate(
                    tool_server_url=TOOL_SERVER_URL,
                    tool_id="tool-2",
                    tenant_id="tenant-1",
                    project_id="project-1",
                )

        flow = await flow_store.consume("fixed-token")
        assert flow.tool_id == "tool-1"


class TestRegistrationFallback:
    """Registration failures of any kind fall back to the default client id."""

    async def _initiate(self, settings, client, registration_url):
        config = OAuthServerConfig(
            authorization_url=f"{AUTH_SERVER}/authorize",
            token_url=f"{AUTH_SERVER}/token",
            registration_url=registration_url,
            supports_dynamic_registration=True,
        )

        async def discover(server_url):
            return config

        flow_store = MemoryPendingFlowStore()
        initiator = FlowInitiator(
            settings,
            discover=discover,
            registrar=DynamicClientRegistrar(client),
            flow_store=flow_store,
        )
        initiation = await initiator.initiate(
            tool_server_url=TOOL_SERVER_URL,
            tool_id="tool-1",
            tenant_id="tenant-1",
            project_id="project-1",
        )
        flow = await flow_store.consume(initiation.flow_token)
        return initiation, flow

    @pytest.mark.asyncio
    async def test_network_error(self, settings):
        """Test that an unreachable registration endpoint does not abort the flow."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            initiation, flow = await self._initiate(
                settings, client, f"{AUTH_SERVER}/register"
            )

        assert query_of(initiation.redirect_url)["client_id"] == "mcp-client"
        assert flow.client_id == "mcp-client"

    @pytest.mark.asyncio
    async def test_malformed_registration_url(self, settings, transport):
        """Test that an unusable registration URL does not abort the flow."""
        async with httpx.AsyncClient(transport=transport) as client:
            initiation, flow = await self._initiate(
                settings, client, "https://idp.example/reg ister\x00"
            )

        assert initiation.redirect_url.startswith(f"{AUTH_SERVER}/authorize?")
        assert query_of(initiation.redirect_url)["client_id"] == "mcp-client"
        assert flow.client_id == "mcp-client"
