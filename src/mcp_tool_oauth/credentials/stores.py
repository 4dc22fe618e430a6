"""Credential stores holding OAuth tokens for MCP tools.

Stores expose the same small async interface (get/set/has/delete) and are
looked up by id in a CredentialStoreRegistry:

- KeyValueCredentialStore ("memory-default"): the service's own AsyncKeyValue
  backend (memory or Redis, optionally Fernet-encrypted)
- NangoCredentialStore ("nango-default"): the Nango secret broker, only
  registered when NANGO_SECRET_KEY is configured
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import httpx
import msgspec

from ..errors import CredentialStoreError
from ..logging_config import get_logger
from ..models import CredentialStoreType

if TYPE_CHECKING:
    from key_value.aio.protocols import AsyncKeyValue

    from ..config import OAuthSettings

logger = get_logger("credentials.stores")

IN_PROCESS_STORE_ID = "memory-default"
BROKER_STORE_ID = "nango-default"
CREDENTIAL_COLLECTION = "mcp-tool-oauth-credentials"

NANGO_PROVIDER = "private-api-bearer"
# Nango rejects API key credentials longer than this
NANGO_MAX_API_KEY_LENGTH = 1024
_ESSENTIAL_TOKEN_FIELDS = ("access_token", "token_type", "expires_in", "refresh_token")


class CredentialStore(Protocol):
    id: str
    type: CredentialStoreType

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def has(self, key: str) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class KeyValueCredentialStore:
    """In-process credential store on an AsyncKeyValue backend."""

    type = CredentialStoreType.memory

    def __init__(
        self,
        storage: "AsyncKeyValue",
        store_id: str = IN_PROCESS_STORE_ID,
        collection: str = CREDENTIAL_COLLECTION,
    ) -> None:
        self.id = store_id
        self._storage = storage
        self._collection = collection

    async def get(self, key: str) -> str | None:
        entry = await self._storage.get(key=key, collection=self._collection)
        if entry is None:
            return None
        return entry.get("value")

    async def set(self, key: str, value: str) -> None:
        try:
            await self._storage.put(
                key=key, value={"value": value}, collection=self._collection
            )
        except Exception as e:
            raise CredentialStoreError(
                f"Failed to store credential in '{self.id}': {e}"
            ) from e
        logger.debug("Credential stored: store_id=%s, key=%s", self.id, key)

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def delete(self, key: str) -> bool:
        return await self._storage.delete(key=key, collection=self._collection)


class NangoConnectionKey(msgspec.Struct, rename="camel"):
    """Lookup key for a Nango connection, passed to get/has/delete as JSON."""

    connection_id: str
    provider_config_key: str


def compact_token_for_nango(value: str) -> str:
    """Shrink a serialized token set to fit Nango's API key limit.

    Raises:
        CredentialStoreError: If even the essential fields do not fit
    """
    if len(value) <= NANGO_MAX_API_KEY_LENGTH:
        return value

    try:
        token_set = msgspec.json.decode(value)
    except msgspec.DecodeError as e:
        raise CredentialStoreError("Credential is too large for Nango") from e

    essential = {k: token_set[k] for k in _ESSENTIAL_TOKEN_FIELDS if k in token_set}
    compacted = msgspec.json.encode(essential).decode()
    if len(compacted) > NANGO_MAX_API_KEY_LENGTH:
        essential.pop("refresh_token", None)
        compacted = msgspec.json.encode(essential).decode()
    if len(compacted) > NANGO_MAX_API_KEY_LENGTH:
        raise CredentialStoreError("Credential is too large for Nango")

    logger.debug("Compacted token for Nango: %d -> %d chars", len(value), len(compacted))
    return compacted


class NangoCredentialStore:
    """Credential store backed by the Nango secret broker.

    set() stores a token as an API key connection of a ``private-api-bearer``
    integration whose unique key is the credential key.

    Args:
        secret_key: Nango secret key
        client: Async HTTP client (a private one is created when omitted)
        server_url: Nango API base URL
    """

    type = CredentialStoreType.nango

    def __init__(
        self,
        secret_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        server_url: str = "https://api.nango.dev",
        store_id: str = BROKER_STORE_ID,
    ) -> None:
        self.id = store_id
        self._secret_key = secret_key
        self._server_url = server_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(
                method, f"{self._server_url}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise CredentialStoreError(f"Nango request failed: {e}") from e

    async def _ensure_integration(self, unique_key: str) -> str:
        # Optimistic create; Nango enforces unique_key, so a failure usually
        # means the integration already exists.
        response = await self._request(
            "POST",
            "/integrations",
            content=msgspec.json.encode(
                {
                    "provider": NANGO_PROVIDER,
                    "unique_key": unique_key,
                    "display_name": unique_key,
                }
            ),
        )
        if response.is_success:
            return unique_key

        existing = await self._request("GET", f"/integrations/{unique_key}")
        if existing.is_success:
            return unique_key

        raise CredentialStoreError(
            f"Nango integration '{unique_key}' could not be created "
            f"(status={response.status_code})"
        )

    async def set(self, key: str, value: str) -> None:
        provider_config_key = await self._ensure_integration(key)
        response = await self._request(
            "POST",
            "/connections",
            content=msgspec.json.encode(
                {
                    "provider_config_key": provider_config_key,
                    "connection_id": key,
                    "metadata": {},
                    "credentials": {
                        "type": "API_KEY",
                        "apiKey": compact_token_for_nango(value),
                    },
                }
            ),
        )
        if not response.is_success:
            raise CredentialStoreError(
                f"Failed to import Nango connection '{key}': status={response.status_code}"
            )
        logger.debug("Credential stored in Nango: connection_id=%s", key)

    def _parse_key(self, key: str) -> NangoConnectionKey | None:
        try:
            return msgspec.json.decode(key, type=NangoConnectionKey)
        except msgspec.DecodeError:
            logger.warning("Invalid Nango credential key: %s", key[:50])
            return None

    async def get(self, key: str) -> str | None:
        parsed = self._parse_key(key)
        if parsed is None:
            return None

        response = await self._request(
            "GET",
            f"/connection/{parsed.connection_id}",
            params={"provider_config_key": parsed.provider_config_key},
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise CredentialStoreError(
                f"Failed to fetch Nango connection: status={response.status_code}"
            )

        credentials = msgspec.json.decode(response.content).get("credentials")
        if not credentials:
            return None
        return msgspec.json.encode(credentials).decode()

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def delete(self, key: str) -> bool:
        parsed = self._parse_key(key)
        if parsed is None:
            return False

        response = await self._request(
            "DELETE",
            f"/connection/{parsed.connection_id}",
            params={"provider_config_key": parsed.provider_config_key},
        )
        return response.is_success


class CredentialStoreRegistry:
    """Credential stores by id."""

    def __init__(self, stores: list[CredentialStore] | None = None) -> None:
        self._stores: dict[str, CredentialStore] = {}
        for store in stores or []:
            self.add(store)

    def add(self, store: CredentialStore) -> None:
        self._stores[store.id] = store

    def get(self, store_id: str) -> CredentialStore | None:
        return self._stores.get(store_id)

    def __contains__(self, store_id: object) -> bool:
        return store_id in self._stores

    def ids(self) -> list[str]:
        return list(self._stores)


def create_credential_stores(
    settings: "OAuthSettings",
    storage: "AsyncKeyValue",
    client: httpx.AsyncClient | None = None,
) -> CredentialStoreRegistry:
    """Create the default credential store registry.

    The in-process store is always registered. The Nango broker is added
    only when its secret key is configured.
    """
    registry = CredentialStoreRegistry([KeyValueCredentialStore(storage)])
    if settings.nango_secret_key:
        registry.add(
            NangoCredentialStore(
                settings.nango_secret_key,
                client=client,
                server_url=settings.nango_server_url,
            )
        )
    logger.info("Credential stores registered: %s", ", ".join(registry.ids()))
    return registry
