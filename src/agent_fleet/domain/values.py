"""Value objects for the agent fleet engine.

All types here are frozen dataclasses -- immutable, compared by value.
They describe members, the results members return, the decisions reached over
those results, and the reports a run hands back to its caller.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .enums import (
    AgentRole,
    ConsensusAlgorithm,
    NoDecisionReason,
    ReportStatus,
    ResultStatus,
)

if TYPE_CHECKING:
    from agent_fleet.infrastructure.config import ConsensusConfig


# ---------------------------------------------------------------------------
# Output identity
# ---------------------------------------------------------------------------

def output_key(output: Any) -> str:
    """Return a canonical string used to group equal outputs.

    Mappings and sequences are compared structurally (JSON with sorted keys),
    so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` vote together.  Anything
    that cannot be JSON-encoded falls back to ``repr``.
    """
    if isinstance(output, str):
        return "s:" + output
    try:
        return "j:" + json.dumps(output, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return "r:" + repr(output)


# ---------------------------------------------------------------------------
# FleetMember
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FleetMember:
    """One worker unit declared in a fleet.

    ``weight`` is ``None`` when the member leaves it to the consensus
    configuration's weight map (which in turn defaults to 1.0).
    """

    member_id: str
    role: AgentRole = AgentRole.WORKER
    tier: int | None = None
    weight: float | None = None
    capabilities: tuple[str, ...] = ()
    labels: Mapping[str, str] = field(default_factory=dict)
    replicas: int = 1

    def __post_init__(self) -> None:
        if not self.member_id:
            raise ValueError("member_id must be a non-empty string")
        if self.weight is not None and self.weight <= 0:
            raise ValueError(
                f"weight for '{self.member_id}' must be positive, got {self.weight}"
            )
        if self.replicas < 1:
            raise ValueError(
                f"replicas for '{self.member_id}' must be >= 1, got {self.replicas}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FleetMember:
        member_id = data.get("id", data.get("member_id", data.get("name", "")))
        return cls(
            member_id=member_id,
            role=AgentRole(data.get("role", AgentRole.WORKER.value)),
            tier=data.get("tier"),
            weight=data.get("weight"),
            capabilities=tuple(data.get("capabilities", data.get("tools", ()))),
            labels=dict(data.get("labels", {})),
            replicas=int(data.get("replicas", 1)),
        )


# ---------------------------------------------------------------------------
# AgentOutput / AgentResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgentOutput:
    """What an invoker returns for one successful invocation."""

    output: Any
    confidence: float | None = None

    def __post_init__(self) -> None:
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class AgentResult:
    """Outcome of one member invocation within one dispatch round.

    ``sequence`` is the arrival index assigned by the coordinating controller;
    together with ``finished_at`` it gives results a total order.
    """

    member_id: str
    status: ResultStatus
    output: Any = None
    confidence: float | None = None
    error: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0
    sequence: int = 0
    task_id: str = ""

    def __post_init__(self) -> None:
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @property
    def completed(self) -> bool:
        return self.status is ResultStatus.COMPLETED

    @property
    def duration(self) -> float:
        """Wall-clock seconds between start and finish (never negative)."""
        return max(0.0, self.finished_at - self.started_at)

    @property
    def arrival_key(self) -> tuple[float, int]:
        return (self.finished_at, self.sequence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "member": self.member_id,
            "status": self.status.value,
            "output": self.output,
            "confidence": self.confidence,
            "error": self.error,
            "task_id": self.task_id,
        }


# ---------------------------------------------------------------------------
# ConsensusDecision
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConsensusDecision:
    """Single decision reduced from one round of results.

    When ``decided`` is ``False`` the ``output`` is ``None``, ``confidence`` is
    0.0 and ``reason``/``explanation`` say why; the full result set is kept
    either way.  The object holds no creation timestamp, so resolving the same
    results twice yields equal decisions.
    """

    decided: bool
    algorithm: ConsensusAlgorithm
    output: Any = None
    confidence: float = 0.0
    results: tuple[AgentResult, ...] = ()
    dissenting: tuple[str, ...] = ()
    reason: NoDecisionReason | None = None
    explanation: str = ""
    votes: int = 0
    approver: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.decided and self.reason is not None:
            raise ValueError("a reached decision cannot carry a no-decision reason")
        if not self.decided and self.reason is None:
            raise ValueError("a missing decision must carry a reason")

    @classmethod
    def reached(
        cls,
        algorithm: ConsensusAlgorithm,
        output: Any,
        confidence: float,
        results: tuple[AgentResult, ...],
        dissenting: tuple[str, ...] = (),
        explanation: str = "",
        approver: str = "",
    ) -> ConsensusDecision:
        return cls(
            decided=True,
            algorithm=algorithm,
            output=output,
            confidence=confidence,
            results=results,
            dissenting=dissenting,
            explanation=explanation,
            votes=sum(1 for r in results if r.completed),
            approver=approver,
        )

    @classmethod
    def no_decision(
        cls,
        algorithm: ConsensusAlgorithm,
        reason: NoDecisionReason,
        explanation: str,
        results: tuple[AgentResult, ...],
        dissenting: tuple[str, ...] = (),
    ) -> ConsensusDecision:
        return cls(
            decided=False,
            algorithm=algorithm,
            results=results,
            dissenting=dissenting,
            reason=reason,
            explanation=explanation,
            votes=sum(1 for r in results if r.completed),
        )

    @property
    def completed_results(self) -> tuple[AgentResult, ...]:
        return tuple(r for r in self.results if r.completed)


@dataclass(frozen=True)
class PendingDecision:
    """A decision waiting on an external approver."""

    decision: ConsensusDecision
    proposed_output: Any = None
    proposed_confidence: float = 0.0
    fleet_name: str = ""
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class ApprovalResponse:
    """Answer returned by the human approval collaborator."""

    approved: bool
    approver: str = ""
    comment: str = ""


# ---------------------------------------------------------------------------
# Tiered pipeline values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TierSpec:
    """One stage of a tiered pipeline."""

    index: int
    members: tuple[FleetMember, ...]
    consensus: ConsensusConfig
    pass_all_results: bool = False
    optional: bool = False
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or f"tier-{self.index}"


@dataclass(frozen=True)
class TierOutcome:
    """What one tier produced and what it forwarded."""

    tier: int
    decision: ConsensusDecision | None
    results: tuple[AgentResult, ...] = ()
    forwarded: Any = None
    skipped: bool = False
    failure: str = ""


# ---------------------------------------------------------------------------
# Deep investigation values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InvestigationStep:
    """One step of a plan: a worker and the sub-input it should handle."""

    worker: str
    input: Any = None
    step_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


@dataclass(frozen=True)
class Iteration:
    """Audit record of one plan / execute / evaluate cycle."""

    index: int
    plan: tuple[InvestigationStep, ...] = ()
    results: tuple[AgentResult, ...] = ()
    findings: tuple[Any, ...] = ()
    confidence: float | None = None


# ---------------------------------------------------------------------------
# FinalReport
# ---------------------------------------------------------------------------

_PARTIAL_STATUSES = frozenset({
    ReportStatus.LOW_CONFIDENCE,
    ReportStatus.INTERRUPTED,
    ReportStatus.SYNTHESIS_FAILED,
})


@dataclass(frozen=True)
class FinalReport:
    """The caller-facing outcome of a tiered or deep run.

    A report produced without reaching the configured confidence is flagged
    through ``status``; check ``is_partial`` before presenting it as final.
    """

    output: Any
    status: ReportStatus
    confidence: float = 0.0
    source: str = ""
    iterations_used: int = 0
    decision: ConsensusDecision | None = None
    notes: tuple[str, ...] = ()

    @property
    def is_partial(self) -> bool:
        return self.status in _PARTIAL_STATUSES
