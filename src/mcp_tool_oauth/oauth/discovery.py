"""OAuth endpoint discovery for MCP tool servers.

Discovery order:

1. POST an empty JSON body to the tool server. A 401 whose WWW-Authenticate
   header names protected resource metadata (RFC 9728 ``resource_metadata``
   or the older ``as_uri``) leads to the first listed authorization server.
2. Otherwise the tool server's own origin is tried.

Authorization servers are queried at ``/.well-known/oauth-authorization-server``
(RFC 8414) and ``/.well-known/openid-configuration``. Only metadata that
advertises the S256 PKCE method is accepted.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

import httpx
import msgspec

from ..logging_config import get_logger
from ..models import OAuthServerConfig

logger = get_logger("oauth.discovery")

WELL_KNOWN_PATHS = (
    "/.well-known/oauth-authorization-server",
    "/.well-known/openid-configuration",
)

_METADATA_URL_PATTERN = re.compile(r'(?:resource_metadata|as_uri)="([^"]+)"')


def origin_of(url: str) -> str:
    """Return scheme://host[:port] of a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def supports_pkce(metadata: dict[str, Any]) -> bool:
    """Return True if authorization server metadata advertises S256."""
    methods = metadata.get("code_challenge_methods_supported") or []
    return "S256" in methods


def config_from_metadata(metadata: dict[str, Any]) -> OAuthServerConfig:
    """Build an OAuthServerConfig from RFC 8414 metadata."""
    registration_url = metadata.get("registration_endpoint")
    return OAuthServerConfig(
        authorization_url=metadata["authorization_endpoint"],
        token_url=metadata["token_endpoint"],
        registration_url=registration_url,
        supports_dynamic_registration=bool(registration_url),
    )


async def fetch_json(client: httpx.AsyncClient, url: str) -> dict[str, Any] | None:
    """GET a JSON object, returning None on any HTTP or decode failure."""
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug("Metadata request failed: url=%s, error=%s", url, e)
        return None

    if response.status_code != 200:
        logger.debug("Metadata not found: url=%s, status=%d", url, response.status_code)
        return None

    try:
        data = msgspec.json.decode(response.content)
    except msgspec.DecodeError:
        logger.debug("Metadata is not valid JSON: url=%s", url)
        return None
    return data if isinstance(data, dict) else None


class EndpointDiscovery:
    """Discovers the authorization server of an MCP tool server.

    Args:
        client: Shared async HTTP client
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def discover(self, server_url: str) -> OAuthServerConfig | None:
        """Discover OAuth endpoints for a tool server.

        Args:
            server_url: The MCP tool server URL

        Returns:
            OAuthServerConfig, or None if the server does not support
            OAuth 2.1 with PKCE
        """
        authorization_server = await self._authorization_server_from_challenge(
            server_url
        )
        if authorization_server is not None:
            config = await self._fetch_well_known(authorization_server)
            if config is not None:
                return config

        return await self._fetch_well_known(origin_of(server_url))

    async def _authorization_server_from_challenge(self, server_url: str) -> str | None:
        try:
            response = await self._client.post(
                server_url,
                content=b"{}",
                headers={"Content-Type": "application/json"},
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Tool server request failed: url=%s, error=%s", server_url, e)
            return None

        if response.status_code != 401:
            return None

        match = _METADATA_URL_PATTERN.search(
            response.headers.get("WWW-Authenticate", "")
        )
        if match is None:
            return None

        metadata = await fetch_json(self._client, match.group(1))
        servers = (metadata or {}).get("authorization_servers")
        if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
            logger.debug("No usable authorization_servers: url=%s", match.group(1))
            return None

        logger.debug(
            "Protected resource metadata found: server_url=%s, authorization_server=%s",
            server_url,
            servers[0],
        )
        return servers[0].rstrip("/")

    async def _fetch_well_known(self, base_url: str) -> OAuthServerConfig | None:
        for path in WELL_KNOWN_PATHS:
            url = f"{base_url}{path}"
            metadata = await fetch_json(self._client, url)
            if metadata is None or not supports_pkce(metadata):
                continue
            try:
                config = config_from_metadata(metadata)
            except KeyError as e:
                logger.debug("Metadata missing endpoint %s: url=%s", e, url)
                continue
            logger.debug("OAuth 2.1/PKCE support detected: url=%s", url)
            return config
        return None
