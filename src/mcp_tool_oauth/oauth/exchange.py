"""Authorization code exchange.

The exchanger runs an ordered list of strategies and returns the first
success. Each strategy is attempted exactly once per callback:

1. MetadataDiscoveryExchange: discovers the authorization server metadata
   at the token URL's origin and performs the grant with authlib.
2. DirectTokenExchange: a plain form-encoded POST to the discovered token
   URL.

Which strategy succeeded is logged and reported in ExchangeOutcome, but is
never shown to end users.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

import httpx
import msgspec
from authlib.integrations.httpx_client import AsyncOAuth2Client

from ..errors import ExchangeError, TokenExchangeFailure
from ..logging_config import get_logger
from ..models import MintedTokenSet
from .discovery import WELL_KNOWN_PATHS, fetch_json, origin_of

logger = get_logger("oauth.exchange")

HTTP_TIMEOUT_SECONDS = 30.0


class ExchangeRequest(msgspec.Struct, kw_only=True, frozen=True):
    """Everything needed to redeem an authorization code."""

    token_url: str
    client_id: str
    code: str
    code_verifier: str
    redirect_uri: str


class ExchangeOutcome(msgspec.Struct, kw_only=True, frozen=True):
    """Token set plus the name of the strategy that produced it."""

    strategy: str
    token_set: MintedTokenSet


class TokenExchangeStrategy(Protocol):
    name: str

    async def exchange(self, request: ExchangeRequest) -> MintedTokenSet:
        """Redeem the code. Raises on any failure."""
        ...


def validate_token_set(strategy: str, token_set: Any) -> MintedTokenSet:
    """Ensure a token response carries an access token."""
    if not isinstance(token_set, dict) or not token_set.get("access_token"):
        raise TokenExchangeFailure(strategy, "Token response has no access_token")
    return dict(token_set)


class MetadataDiscoveryExchange:
    """Standards-based exchange: RFC 8414 discovery, then authlib's grant.

    The metadata's issuer must match the token URL's origin and its
    token_endpoint is used for the grant.
    """

    name = "discovery"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._transport = transport

    async def _discover_token_endpoint(self, token_url: str) -> str:
        issuer = origin_of(token_url)
        for path in WELL_KNOWN_PATHS:
            metadata = await fetch_json(self._client, f"{issuer}{path}")
            if metadata is None:
                continue
            if str(metadata.get("issuer", "")).rstrip("/") != issuer:
                raise TokenExchangeFailure(
                    self.name,
                    f"Issuer mismatch: expected {issuer}, got {metadata.get('issuer')!r}",
                )
            token_endpoint = metadata.get("token_endpoint")
            if not token_endpoint:
                raise TokenExchangeFailure(self.name, "Metadata has no token_endpoint")
            return str(token_endpoint)

        raise TokenExchangeFailure(self.name, f"No authorization server metadata at {issuer}")

    async def exchange(self, request: ExchangeRequest) -> MintedTokenSet:
        token_endpoint = await self._discover_token_endpoint(request.token_url)
        logger.debug(
            "Exchanging code via discovered token endpoint: url=%s, client_id=%s",
            token_endpoint,
            request.client_id,
        )

        async with AsyncOAuth2Client(
            client_id=request.client_id,
            token_endpoint_auth_method="none",
            timeout=self._timeout,
            transport=self._transport,
        ) as oauth_client:
            token = await oauth_client.fetch_token(
                url=token_endpoint,
                grant_type="authorization_code",
                code=request.code,
                redirect_uri=request.redirect_uri,
                code_verifier=request.code_verifier,
            )

        return validate_token_set(self.name, token)


class DirectTokenExchange:
    """Manual authorization_code grant against the token URL."""

    name = "direct"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def exchange(self, request: ExchangeRequest) -> MintedTokenSet:
        logger.debug(
            "Attempting direct token exchange: url=%s, client_id=%s",
            request.token_url,
            request.client_id,
        )
        try:
            response = await self._client.post(
                request.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": request.code,
                    "redirect_uri": request.redirect_uri,
                    "client_id": request.client_id,
                    "code_verifier": request.code_verifier,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenExchangeFailure(self.name, f"Request failed: {e}") from e

        if not response.is_success:
            raise TokenExchangeFailure(
                self.name,
                f"Token endpoint returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            token_set = msgspec.json.decode(response.content)
        except msgspec.DecodeError as e:
            raise TokenExchangeFailure(
                self.name,
                "Token response is not JSON",
                status_code=response.status_code,
                body=response.text,
            ) from e

        return validate_token_set(self.name, token_set)


class TokenExchanger:
    """Tries exchange strategies in order; the first success wins.

    Args:
        strategies: Strategies in priority order
    """

    def __init__(self, strategies: Sequence[TokenExchangeStrategy]) -> None:
        if not strategies:
            raise ValueError("At least one token exchange strategy is required")
        self.strategies = list(strategies)

    async def exchange(self, request: ExchangeRequest) -> ExchangeOutcome:
        """Redeem an authorization code.

        Raises:
            ExchangeError: If every strategy failed. ``detail`` holds the
                last provider response body, if any.
        """
        failures: list[str] = []
        detail: str | None = None

        for strategy in self.strategies:
            try:
                token_set = await strategy.exchange(request)
            except Exception as e:  # any failure hands over to the next strategy
                logger.warning(
                    "Token exchange strategy failed: strategy=%s, error=%s",
                    strategy.name,
                    e,
                )
                failures.append(f"{strategy.name}: {e}")
                if isinstance(e, TokenExchangeFailure) and e.body:
                    detail = e.body
                continue

            logger.info(
                "Token exchange successful: strategy=%s, token_type=%s, has_refresh=%s",
                strategy.name,
                token_set.get("token_type"),
                bool(token_set.get("refresh_token")),
            )
            return ExchangeOutcome(strategy=strategy.name, token_set=token_set)

        logger.error(
            "All token exchange strategies failed: client_id=%s, token_url=%s",
            request.client_id,
            request.token_url,
        )
        raise ExchangeError("; ".join(failures), detail=detail)
