"""Event bus infrastructure for the agent fleet engine.

Provides an asynchronous pub-sub bus for fleet events plus an in-memory event
store that collects a run's events for its result and for replay.  The bus
catches and logs handler errors so that a single failing subscriber never
breaks a dispatch round.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Sequence
from typing import Any

from agent_fleet.domain.events import DomainEvent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------
EventHandler = Callable[[DomainEvent], Any]  # may be sync or async callable


# ===================================================================== #
#  Asynchronous Event Bus                                                #
# ===================================================================== #

class AsyncEventBus:
    """Async pub-sub bus carried by a ``RunContext``.

    Handlers may be regular callables or coroutine functions.  Typed handlers
    match by ``isinstance``, so subscribing to ``DomainEvent`` is equivalent
    to ``subscribe_all``.  Global handlers run first, then typed handlers in
    registration order.

    Usage::

        bus = AsyncEventBus()
        bus.subscribe(ConsensusReached, on_decision)
        await bus.publish(ConsensusReached(...))
    """

    def __init__(self) -> None:
        self._handlers: dict[type[DomainEvent], list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._published = 0

    # -- subscription -------------------------------------------------------

    def subscribe(self, event_type: type[DomainEvent], handler: EventHandler) -> None:
        """Register *handler* for *event_type* and its subclasses."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register *handler* for every published event."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: type[DomainEvent], handler: EventHandler) -> bool:
        """Remove *handler* from *event_type*. Returns ``True`` if found."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def unsubscribe_all(self, handler: EventHandler) -> bool:
        if handler in self._global_handlers:
            self._global_handlers.remove(handler)
            return True
        return False

    # -- publishing ---------------------------------------------------------

    async def publish(self, event: DomainEvent) -> None:
        """Deliver *event* to every matching handler."""
        self._published += 1
        for handler in self._matching(event):
            try:
                outcome = handler(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception(
                    "Error in event handler %r for %s", handler, type(event).__name__
                )

    async def publish_many(self, events: Sequence[DomainEvent]) -> None:
        """Publish a batch of events in order."""
        for event in events:
            await self.publish(event)

    def _matching(self, event: DomainEvent) -> list[EventHandler]:
        matched = list(self._global_handlers)
        for event_type, handlers in list(self._handlers.items()):
            if isinstance(event, event_type):
                matched.extend(handlers)
        return matched

    # -- introspection / lifecycle ------------------------------------------

    @property
    def published_count(self) -> int:
        return self._published

    def handler_count(self, event_type: type[DomainEvent] | None = None) -> int:
        """Return the number of handlers registered."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        total = sum(len(hs) for hs in self._handlers.values())
        return total + len(self._global_handlers)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        self._global_handlers.clear()


# ===================================================================== #
#  Event Store                                                           #
# ===================================================================== #

class EventStore:
    """In-memory append-only event log.

    Wire it to a bus with ``subscribe_all`` so every published event is kept::

        store = EventStore()
        bus = AsyncEventBus()
        bus.subscribe_all(store.append)
    """

    def __init__(self, max_size: int = 0) -> None:
        """Create a store.

        Parameters
        ----------
        max_size:
            Maximum number of events to keep.  ``0`` means unlimited.
        """
        self._events: list[DomainEvent] = []
        self._max_size = max_size
        self._lock = threading.Lock()

    def append(self, event: DomainEvent) -> None:
        """Append one event, evicting the oldest past *max_size*."""
        with self._lock:
            self._events.append(event)
            if self._max_size > 0 and len(self._events) > self._max_size:
                del self._events[: len(self._events) - self._max_size]

    def query(
        self,
        event_type: type[DomainEvent] | None = None,
        source_id: str | None = None,
        limit: int = 0,
    ) -> list[DomainEvent]:
        """Return events matching the optional filters.

        Parameters
        ----------
        event_type:
            Only return instances of this type.
        source_id:
            Only return events emitted by this run.
        limit:
            Keep only the newest *limit* matches (0 = unlimited).
        """
        with self._lock:
            result = list(self._events)
        if event_type is not None:
            result = [e for e in result if isinstance(e, event_type)]
        if source_id is not None:
            result = [e for e in result if e.source_id == source_id]
        if limit > 0:
            result = result[-limit:]
        return result

    def snapshot(self) -> tuple[DomainEvent, ...]:
        with self._lock:
            return tuple(self._events)

    @property
    def latest(self) -> DomainEvent | None:
        with self._lock:
            return self._events[-1] if self._events else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __bool__(self) -> bool:
        return len(self) > 0

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
