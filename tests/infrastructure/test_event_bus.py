"""Tests for AsyncEventBus and EventStore."""

from __future__ import annotations

import pytest

from agent_fleet.domain.enums import ConsensusAlgorithm
from agent_fleet.domain.events import (
    ConsensusReached,
    DomainEvent,
    MemberCompleted,
    MemberDispatched,
)
from agent_fleet.infrastructure.event_bus import AsyncEventBus, EventStore


class TestAsyncEventBus:
    """Test async subscribe, publish and handler isolation."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self) -> None:
        bus = AsyncEventBus()
        received: list[str] = []

        async def on_async(event: DomainEvent) -> None:
            received.append("async")

        bus.subscribe(MemberDispatched, lambda e: received.append("sync"))
        bus.subscribe(MemberDispatched, on_async)
        await bus.publish(MemberDispatched(member_id="a"))
        assert received == ["sync", "async"]
        assert bus.published_count == 1

    @pytest.mark.asyncio
    async def test_typed_subscription_filters_events(self) -> None:
        bus = AsyncEventBus()
        dispatched: list[DomainEvent] = []
        bus.subscribe(MemberDispatched, dispatched.append)

        await bus.publish(MemberDispatched(member_id="a"))
        await bus.publish(MemberCompleted(member_id="a"))
        assert len(dispatched) == 1

    @pytest.mark.asyncio
    async def test_base_type_matches_everything(self) -> None:
        bus = AsyncEventBus()
        seen: list[DomainEvent] = []
        bus.subscribe(DomainEvent, seen.append)
        await bus.publish_many(
            [MemberDispatched(), ConsensusReached(algorithm=ConsensusAlgorithm.MAJORITY)]
        )
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_global_handlers_run_first(self) -> None:
        bus = AsyncEventBus()
        order: list[str] = []
        bus.subscribe(MemberDispatched, lambda e: order.append("typed"))
        bus.subscribe_all(lambda e: order.append("global"))
        await bus.publish(MemberDispatched())
        assert order == ["global", "typed"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self) -> None:
        bus = AsyncEventBus()
        received: list[DomainEvent] = []

        def broken(event: DomainEvent) -> None:
            raise RuntimeError("handler exploded")

        bus.subscribe(MemberDispatched, broken)
        bus.subscribe(MemberDispatched, received.append)
        await bus.publish(MemberDispatched())
        assert len(received) == 1

    def test_unsubscribe_and_counts(self) -> None:
        bus = AsyncEventBus()

        def handler(event: DomainEvent) -> None:
            pass

        bus.subscribe(MemberDispatched, handler)
        bus.subscribe_all(handler)
        assert bus.handler_count() == 2
        assert bus.handler_count(MemberDispatched) == 1
        assert bus.unsubscribe(MemberDispatched, handler)
        assert not bus.unsubscribe(MemberDispatched, handler)
        assert bus.unsubscribe_all(handler)
        assert bus.handler_count() == 0

    def test_clear(self) -> None:
        bus = AsyncEventBus()
        bus.subscribe_all(lambda e: None)
        bus.clear()
        assert bus.handler_count() == 0


class TestEventStore:

    def test_append_and_query(self) -> None:
        store = EventStore()
        store.append(MemberDispatched(source_id="r1", member_id="a"))
        store.append(MemberCompleted(source_id="r1", member_id="a"))
        store.append(MemberDispatched(source_id="r2", member_id="b"))

        assert len(store) == 3
        assert len(store.query(event_type=MemberDispatched)) == 2
        assert len(store.query(source_id="r1")) == 2
        newest = store.query(limit=1)
        assert newest[0] is store.latest

    def test_max_size_evicts_oldest(self) -> None:
        store = EventStore(max_size=2)
        for i in range(3):
            store.append(MemberDispatched(member_id=str(i)))
        ids = [e.member_id for e in store.snapshot()]  # type: ignore[attr-defined]
        assert ids == ["1", "2"]

    def test_empty_store(self) -> None:
        store = EventStore()
        assert not store
        assert store.latest is None
        store.append(MemberDispatched())
        store.clear()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_wired_to_bus(self) -> None:
        store = EventStore()
        bus = AsyncEventBus()
        bus.subscribe_all(store.append)
        await bus.publish(MemberDispatched())
        assert len(store) == 1
