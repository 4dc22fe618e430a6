"""Tests for pending flow stores."""

import asyncio

import pytest
from key_value.aio.stores.memory import MemoryStore

from mcp_tool_oauth.errors import FlowTokenCollisionError
from mcp_tool_oauth.models import PendingFlow
from mcp_tool_oauth.oauth.flow_store import (
    KeyValuePendingFlowStore,
    MemoryPendingFlowStore,
)


def make_flow(tool_id: str = "tool-1") -> PendingFlow:
    return PendingFlow(
        code_verifier="verifier",
        tool_id=tool_id,
        tenant_id="tenant-1",
        project_id="project-1",
        client_id="mcp-client",
        redirect_uri="https://app.example.com/oauth/callback",
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestMemoryPendingFlowStore:
    """Tests for MemoryPendingFlowStore."""

    @pytest.mark.asyncio
    async def test_consume_once(self):
        """Test that a flow can be consumed exactly once."""
        store = MemoryPendingFlowStore()
        flow = make_flow()
        await store.put("token-a", flow)

        assert await store.consume("token-a") == flow
        assert await store.consume("token-a") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_token(self):
        """Test consuming a token that was never stored."""
        store = MemoryPendingFlowStore()
        assert await store.consume("missing") is None

    @pytest.mark.asyncio
    async def test_consume_just_before_ttl(self):
        """Test that a flow is still valid just before its TTL."""
        clock = FakeClock()
        store = MemoryPendingFlowStore(ttl_seconds=600, clock=clock)
        await store.put("token-a", make_flow())

        clock.now = 599.9
        assert await store.consume("token-a") is not None

    @pytest.mark.asyncio
    async def test_consume_at_or_after_ttl(self):
        """Test that a flow is gone once its TTL has elapsed."""
        clock = FakeClock()
        store = MemoryPendingFlowStore(ttl_seconds=600, clock=clock)
        await store.put("token-a", make_flow())
        await store.put("token-b", make_flow())

        clock.now = 600.0
        assert await store.consume("token-a") is None
        clock.now = 600.1
        assert await store.consume("token-b") is None

    @pytest.mark.asyncio
    async def test_timer_evicts_expired_flow(self):
        """Test that the eviction timer removes expired entries."""
        store = MemoryPendingFlowStore(ttl_seconds=0.01)
        await store.put("token-a", make_flow())
        assert len(store) == 1

        await asyncio.sleep(0.05)

        assert len(store) == 0
        assert await store.consume("token-a") is None

    @pytest.mark.asyncio
    async def test_collision_rejected(self):
        """Test that storing a pending token twice fails closed."""
        store = MemoryPendingFlowStore()
        original = make_flow("tool-1")
        await store.put("token-a", original)

        with pytest.raises(FlowTokenCollisionError):
            await store.put("token-a", make_flow("tool-2"))

        # The original flow is untouched
        assert await store.consume("token-a") == original

    @pytest.mark.asyncio
    async def test_concurrent_consume_single_winner(self):
        """Test that concurrent consumers see at most one success."""
        store = MemoryPendingFlowStore()
        await store.put("token-a", make_flow())

        results = await asyncio.gather(*(store.consume("token-a") for _ in range(5)))

        assert sum(r is not None for r in results) == 1

    @pytest.mark.asyncio
    async def test_close(self):
        """Test that close() drops pending flows."""
        store = MemoryPendingFlowStore()
        await store.put("token-a", make_flow())
        await store.put("token-b", make_flow())

        store.close()

        assert len(store) == 0
        assert await store.consume("token-a") is None


class TestKeyValuePendingFlowStore:
    """Tests for KeyValuePendingFlowStore on the in-memory backend."""

    @pytest.mark.asyncio
    async def test_round_trip_and_consume_once(self):
        """Test that a stored flow comes back intact exactly once."""
        store = KeyValuePendingFlowStore(MemoryStore())
        flow = make_flow()
        await store.put("token-a", flow)

        assert await store.consume("token-a") == flow
        assert await store.consume("token-a") is None

    @pytest.mark.asyncio
    async def test_collision_rejected(self):
        """Test that storing a pending token twice fails closed."""
        store = KeyValuePendingFlowStore(MemoryStore())
        await store.put("token-a", make_flow())

        with pytest.raises(FlowTokenCollisionError):
            await store.put("token-a", make_flow("tool-2"))

    @pytest.mark.asyncio
    async def test_stores_with_ttl(self):
        """Test that the backend receives the flow TTL."""
        storage = MemoryStore()
        store = KeyValuePendingFlowStore(storage, ttl_seconds=42)
        await store.put("token-a", make_flow())

        _, ttl = await storage.ttl(key="token-a", collection="mcp-tool-oauth-pending-flows")
        assert ttl is not None
        assert 0 < ttl <= 42
