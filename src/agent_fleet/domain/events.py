"""Domain events for the agent fleet engine.

Every event is a frozen dataclass inheriting from ``DomainEvent``.  The
coordinating controllers emit events; listeners (audit, metrics, presentation)
react.  All events carry a ``timestamp`` and a ``source_id`` identifying the
run that emitted them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .enums import (
    ConsensusAlgorithm,
    CoordinationMode,
    NoDecisionReason,
    ResultStatus,
)

# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events.

    Subclasses should remain frozen (immutable) and should *not* override
    ``__eq__`` or ``__hash__``.
    """

    timestamp: float = field(default_factory=time.time)
    source_id: str = ""


# ---------------------------------------------------------------------------
# Run lifecycle events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FleetRunStarted(DomainEvent):
    """A fleet run began."""

    fleet_name: str = ""
    mode: CoordinationMode = CoordinationMode.PEER
    member_count: int = 0


@dataclass(frozen=True)
class FleetRunCompleted(DomainEvent):
    """A fleet run finished, with or without a decision."""

    fleet_name: str = ""
    decided: bool = False
    elapsed_seconds: float = 0.0
    error: str = ""


# ---------------------------------------------------------------------------
# Member events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MemberDispatched(DomainEvent):
    """A member invocation was started."""

    member_id: str = ""
    task_id: str = ""


@dataclass(frozen=True)
class MemberCompleted(DomainEvent):
    """A member invocation finished successfully."""

    member_id: str = ""
    task_id: str = ""
    duration: float = 0.0
    confidence: float | None = None


@dataclass(frozen=True)
class MemberFailed(DomainEvent):
    """A member invocation failed, timed out or was cancelled."""

    member_id: str = ""
    task_id: str = ""
    status: ResultStatus = ResultStatus.FAILED
    error: str = ""


# ---------------------------------------------------------------------------
# Consensus events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConsensusReached(DomainEvent):
    """A round was reduced to a decision."""

    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.MAJORITY
    votes: int = 0
    confidence: float = 0.0
    dissenting: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConsensusFailed(DomainEvent):
    """A round ended without a decision."""

    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.MAJORITY
    reason: NoDecisionReason = NoDecisionReason.INSUFFICIENT_VOTES
    explanation: str = ""
    votes: int = 0


# ---------------------------------------------------------------------------
# Tier / iteration events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TierCompleted(DomainEvent):
    """One tier of a tiered pipeline finished."""

    tier: int = 0
    forwarded_count: int = 0
    skipped: bool = False


@dataclass(frozen=True)
class IterationCompleted(DomainEvent):
    """One deep-mode plan / execute / evaluate cycle finished."""

    iteration: int = 0
    steps: int = 0
    confidence: float | None = None
    findings_count: int = 0
