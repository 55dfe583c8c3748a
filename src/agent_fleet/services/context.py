"""Per-run context: identity, deadline, cancellation and event publishing.

A ``RunContext`` is created by the caller (or by ``FleetRunner``) for exactly
one run and passed explicitly to every controller.  Nothing in the engine
keeps run state in module globals.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from agent_fleet.domain.events import DomainEvent
from agent_fleet.infrastructure.context_store import SharedContextStore
from agent_fleet.infrastructure.event_bus import AsyncEventBus, EventStore
from agent_fleet.services.audit_trail import FleetAuditTrail

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Caller-owned handle for one fleet run.

    Attributes
    ----------
    run_id:
        Identifier stamped on every event the run emits.
    deadline:
        Absolute ``time.monotonic()`` instant after which the run stops
        dispatching.  ``None`` means no run-level deadline.
    event_bus:
        Optional bus receiving the run's domain events.
    event_store:
        Log of every event emitted through :meth:`emit`.
    shared_store:
        Optional shared context collaborator.
    audit:
        Ordered record of the run's rounds, decisions, tiers and iterations.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    deadline: float | None = None
    event_bus: AsyncEventBus | None = None
    event_store: EventStore = field(default_factory=EventStore)
    shared_store: SharedContextStore | None = None
    audit: FleetAuditTrail | None = None
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self) -> None:
        if self.audit is None:
            self.audit = FleetAuditTrail(run_id=self.run_id)

    @classmethod
    def with_timeout(cls, seconds: float | None, **kwargs: object) -> RunContext:
        """Build a context whose deadline is *seconds* from now."""
        deadline = time.monotonic() + seconds if seconds is not None else None
        return cls(deadline=deadline, **kwargs)  # type: ignore[arg-type]

    # -- cancellation -------------------------------------------------------

    def cancel(self) -> None:
        """Request cooperative cancellation of the run."""
        if not self._cancel_event.is_set():
            logger.info("Run %s: cancellation requested", self.run_id)
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    # -- deadline -----------------------------------------------------------

    def remaining(self) -> float | None:
        """Seconds until the run deadline (never negative), or ``None``."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def should_stop(self) -> bool:
        return self.cancelled or self.expired

    def round_deadline(self, timeout: float | None) -> float | None:
        """Combine a relative round *timeout* with the run deadline."""
        candidates = [d for d in (self.deadline,) if d is not None]
        if timeout is not None:
            candidates.append(time.monotonic() + timeout)
        return min(candidates) if candidates else None

    # -- events -------------------------------------------------------------

    async def emit(self, event: DomainEvent) -> None:
        """Record *event* and publish it on the bus, if any."""
        self.event_store.append(event)
        if self.event_bus is not None:
            await self.event_bus.publish(event)
