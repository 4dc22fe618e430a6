"""Pending OAuth flow storage.

A pending flow lives between the authorization redirect and the provider's
callback. Each entry is keyed by an opaque flow token (the OAuth ``state``),
expires after a fixed TTL and can be consumed at most once.

Two backends share the PendingFlowStore protocol:

- MemoryPendingFlowStore: process-local, evicted by event loop timers
- KeyValuePendingFlowStore: any AsyncKeyValue (e.g. Redis) with native TTL,
  for deployments with more than one server instance
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Protocol

import msgspec

from ..config import DEFAULT_FLOW_TTL_SECONDS
from ..errors import FlowTokenCollisionError
from ..logging_config import get_logger
from ..models import PendingFlow

if TYPE_CHECKING:
    from key_value.aio.protocols import AsyncKeyValue

logger = get_logger("oauth.flow_store")

FLOW_COLLECTION = "mcp-tool-oauth-pending-flows"


class PendingFlowStore(Protocol):
    """Consume-once, TTL-bounded mapping of flow token to pending flow."""

    async def put(self, flow_token: str, flow: PendingFlow) -> None:
        """Store a flow. Raises FlowTokenCollisionError if the token is pending."""
        ...

    async def consume(self, flow_token: str) -> PendingFlow | None:
        """Atomically read and remove a flow. Returns None if absent or expired."""
        ...


class MemoryPendingFlowStore:
    """In-process pending flow store.

    put() and consume() never await between reading and mutating the
    underlying dict, so on a single event loop each token is removed by
    exactly one caller: the first consume() or the eviction timer.

    Args:
        ttl_seconds: Lifetime of a pending flow
        clock: Monotonic time source; injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_FLOW_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[PendingFlow, float]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def put(self, flow_token: str, flow: PendingFlow) -> None:
        if flow_token in self._entries:
            raise FlowTokenCollisionError(
                "Flow token collision: a flow with this token is already pending"
            )

        self._entries[flow_token] = (flow, self._clock() + self.ttl_seconds)
        loop = asyncio.get_running_loop()
        self._timers[flow_token] = loop.call_later(
            self.ttl_seconds, self._evict, flow_token
        )
        logger.debug(
            "Stored pending flow: tool_id=%s, ttl=%ss", flow.tool_id, self.ttl_seconds
        )

    async def consume(self, flow_token: str) -> PendingFlow | None:
        entry = self._entries.pop(flow_token, None)
        timer = self._timers.pop(flow_token, None)
        if timer is not None:
            timer.cancel()

        if entry is None:
            return None

        flow, expires_at = entry
        if self._clock() >= expires_at:
            # Timer has not fired yet, but the flow is already past its TTL
            logger.debug("Pending flow expired before consumption: tool_id=%s", flow.tool_id)
            return None
        return flow

    def _evict(self, flow_token: str) -> None:
        self._timers.pop(flow_token, None)
        entry = self._entries.pop(flow_token, None)
        if entry is not None:
            logger.debug("Evicted expired pending flow: tool_id=%s", entry[0].tool_id)

    def close(self) -> None:
        """Cancel outstanding eviction timers and drop all pending flows."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()


class KeyValuePendingFlowStore:
    """Pending flow store on top of an AsyncKeyValue backend.

    Expiry is delegated to the backend's TTL support. consume() only returns
    a flow if its own delete() removed the entry, so concurrent consumers
    (even in different processes sharing Redis) see at most one success.
    """

    def __init__(
        self,
        storage: "AsyncKeyValue",
        ttl_seconds: float = DEFAULT_FLOW_TTL_SECONDS,
        collection: str = FLOW_COLLECTION,
    ) -> None:
        self._storage = storage
        self.ttl_seconds = ttl_seconds
        self._collection = collection

    async def put(self, flow_token: str, flow: PendingFlow) -> None:
        existing = await self._storage.get(key=flow_token, collection=self._collection)
        if existing is not None:
            raise FlowTokenCollisionError(
                "Flow token collision: a flow with this token is already pending"
            )

        await self._storage.put(
            key=flow_token,
            value=msgspec.to_builtins(flow),
            collection=self._collection,
            ttl=self.ttl_seconds,
        )
        logger.debug(
            "Stored pending flow: tool_id=%s, ttl=%ss", flow.tool_id, self.ttl_seconds
        )

    async def consume(self, flow_token: str) -> PendingFlow | None:
        data = await self._storage.get(key=flow_token, collection=self._collection)
        if data is None:
            return None

        if not await self._storage.delete(key=flow_token, collection=self._collection):
            logger.debug("Pending flow consumed concurrently by another caller")
            return None

        return msgspec.convert(data, PendingFlow)
