"""Authorization flow initiation for MCP tools."""

from __future__ import annotations

import secrets
from typing import Awaitable, Callable, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import msgspec

from ..config import OAuthSettings, build_redirect_uri
from ..errors import ConfigurationError, RegistrationError
from ..logging_config import get_logger
from ..models import OAuthServerConfig, PendingFlow
from .flow_store import PendingFlowStore
from .pkce import generate_pkce_pair
from .registration import ClientMetadata

logger = get_logger("oauth.initiator")

# Discovers the authorization server for a tool server URL
DiscoverEndpoints = Callable[[str], Awaitable["OAuthServerConfig | None"]]


class ClientRegistrar(Protocol):
    async def register(self, registration_url: str, metadata: ClientMetadata) -> str:
        ...


class FlowInitiation(msgspec.Struct, kw_only=True, frozen=True):
    """Where to send the user, and the token that will come back as state."""

    redirect_url: str
    flow_token: str


def new_flow_token() -> str:
    """Return an unguessable flow token, independent of any identifier."""
    return secrets.token_urlsafe(32)


def build_authorization_url(
    config: OAuthServerConfig,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    resource: str,
) -> str:
    """Build the authorization request URL.

    Query parameters already present on the authorization endpoint are kept;
    flow parameters replace any parameter with the same name.
    """
    parts = urlsplit(config.authorization_url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(
        {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            # RFC 8707 resource indicator, required by MCP authorization
            "resource": resource,
        }
    )
    return urlunsplit(parts._replace(query=urlencode(params)))


class FlowInitiator:
    """Starts OAuth 2.1 + PKCE authorization for a tool server.

    Args:
        settings: OAuth client settings
        discover: Endpoint discovery callable
        registrar: Dynamic client registrar
        flow_store: Store shared with the callback processor
        token_factory: Flow token generator (overridable in tests)
    """

    def __init__(
        self,
        settings: OAuthSettings,
        discover: DiscoverEndpoints,
        registrar: ClientRegistrar,
        flow_store: PendingFlowStore,
        token_factory: Callable[[], str] = new_flow_token,
    ) -> None:
        self._settings = settings
        self._discover = discover
        self._registrar = registrar
        self._flow_store = flow_store
        self._token_factory = token_factory

    async def initiate(
        self,
        *,
        tool_server_url: str,
        tool_id: str,
        tenant_id: str,
        project_id: str,
        redirect_base_url: str | None = None,
    ) -> FlowInitiation:
        """Begin an authorization attempt for a tool.

        Args:
            tool_server_url: MCP server URL of the tool (also the resource)
            tool_id: Tool identifier
            tenant_id: Tenant scope
            project_id: Project scope
            redirect_base_url: Override for the callback base URL

        Returns:
            FlowInitiation with the consent page URL and the flow token

        Raises:
            ConfigurationError: If the tool server does not support OAuth
            FlowTokenCollisionError: If the generated token is already pending
        """
        config = await self._discover(tool_server_url)
        if config is None:
            raise ConfigurationError("OAuth not supported by this server")

        pkce = generate_pkce_pair()
        redirect_uri = build_redirect_uri(
            redirect_base_url or self._settings.base_url,
            self._settings.callback_path,
        )
        client_id = await self._resolve_client_id(config, redirect_uri)

        flow_token = self._token_factory()
        redirect_url = build_authorization_url(
            config,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=flow_token,
            code_challenge=pkce.code_challenge,
            resource=tool_server_url,
        )

        await self._flow_store.put(
            flow_token,
            PendingFlow(
                code_verifier=pkce.code_verifier,
                tool_id=tool_id,
                tenant_id=tenant_id,
                project_id=project_id,
                client_id=client_id,
                redirect_uri=redirect_uri,
            ),
        )

        logger.info(
            "OAuth flow initiated: tool_id=%s, tenant_id=%s, project_id=%s, "
            "authorization_url=%s, client_id=%s",
            tool_id,
            tenant_id,
            project_id,
            config.authorization_url,
            client_id,
        )
        return FlowInitiation(redirect_url=redirect_url, flow_token=flow_token)

    async def _resolve_client_id(self, config: OAuthServerConfig, redirect_uri: str) -> str:
        default_client_id = self._settings.default_client_id
        if not (config.supports_dynamic_registration and config.registration_url):
            return default_client_id

        metadata = ClientMetadata(
            client_name=self._settings.client_name,
            client_uri=self._settings.client_uri,
            logo_uri=self._settings.logo_uri,
            redirect_uris=[redirect_uri],
        )
        try:
            return await self._registrar.register(config.registration_url, metadata)
        except RegistrationError as e:
            logger.warning(
                "Dynamic client registration failed, using default client_id: %s", e
            )
            return default_client_id
