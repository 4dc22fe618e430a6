"""Dynamic client registration (RFC 7591).

Registration is best effort: the flow initiator falls back to a
pre-configured client id whenever register() raises RegistrationError.
"""

from __future__ import annotations

import httpx
import msgspec

from ..errors import RegistrationError
from ..logging_config import get_logger

logger = get_logger("oauth.registration")


class ClientMetadata(msgspec.Struct, kw_only=True, frozen=True):
    """Client metadata for a public (PKCE-only) native client."""

    client_name: str
    client_uri: str
    logo_uri: str
    redirect_uris: list[str]
    grant_types: list[str] = msgspec.field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = msgspec.field(default_factory=lambda: ["code"])
    # PKCE only, no client secret
    token_endpoint_auth_method: str = "none"
    application_type: str = "native"


class _RegistrationResponse(msgspec.Struct):
    client_id: str


class DynamicClientRegistrar:
    """Registers this service as an OAuth client at runtime.

    Args:
        client: Shared async HTTP client
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def register(self, registration_url: str, metadata: ClientMetadata) -> str:
        """Register a client and return the issued client_id.

        Raises:
            RegistrationError: On network errors, non-2xx responses or a
                response without a client_id
        """
        logger.info("Attempting dynamic client registration: url=%s", registration_url)

        try:
            response = await self._client.post(
                registration_url,
                content=msgspec.json.encode(metadata),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise RegistrationError(f"Registration request failed: {e}") from e

        if not response.is_success:
            raise RegistrationError(
                f"Registration rejected: status={response.status_code}"
            )

        try:
            registration = msgspec.json.decode(response.content, type=_RegistrationResponse)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise RegistrationError(f"Invalid registration response: {e}") from e

        logger.info("Dynamic client registration successful: client_id=%s", registration.client_id)
        return registration.client_id
