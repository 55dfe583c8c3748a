"""Fleet Audit Trail -- ordered, serializable history of a run.

Records every dispatch round, consensus decision, tier outcome and deep
iteration in the order they happened.  The run result exposes it so callers
can show exactly which member said what and how the engine reduced it.
"""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from agent_fleet.domain.entities import FleetMetrics
from agent_fleet.domain.values import (
    AgentResult,
    ConsensusDecision,
    Iteration,
    TierOutcome,
)

ROUND = "round"
DECISION = "decision"
TIER = "tier"
ITERATION = "iteration"


@dataclass(frozen=True)
class AuditEntry:
    """One recorded step of a run."""

    kind: str
    label: str = ""
    timestamp: float = field(default_factory=time.time)
    results: tuple[AgentResult, ...] = ()
    decision: ConsensusDecision | None = None
    tier: TierOutcome | None = None
    iteration: Iteration | None = None


def decision_to_dict(decision: ConsensusDecision) -> dict[str, Any]:
    return {
        "decided": decision.decided,
        "algorithm": decision.algorithm.value,
        "output": decision.output,
        "confidence": decision.confidence,
        "votes": decision.votes,
        "dissenting": list(decision.dissenting),
        "reason": decision.reason.value if decision.reason else None,
        "explanation": decision.explanation,
        "approver": decision.approver,
    }


class FleetAuditTrail:
    """Append-only audit trail for one fleet run.

    Parameters
    ----------
    run_id:
        Identifier of the run being recorded.
    """

    def __init__(self, run_id: str = "") -> None:
        self.run_id = run_id
        self._entries: list[AuditEntry] = []

    # -- recording -------------------------------------------------------------

    def record_round(self, results: Sequence[AgentResult], label: str = "") -> AuditEntry:
        entry = AuditEntry(kind=ROUND, label=label, results=tuple(results))
        self._entries.append(entry)
        return entry

    def record_decision(self, decision: ConsensusDecision, label: str = "") -> AuditEntry:
        entry = AuditEntry(kind=DECISION, label=label, decision=decision)
        self._entries.append(entry)
        return entry

    def record_tier(self, outcome: TierOutcome) -> AuditEntry:
        entry = AuditEntry(kind=TIER, label=f"tier-{outcome.tier}", tier=outcome)
        self._entries.append(entry)
        return entry

    def record_iteration(self, iteration: Iteration) -> AuditEntry:
        entry = AuditEntry(
            kind=ITERATION, label=f"iteration-{iteration.index}", iteration=iteration
        )
        self._entries.append(entry)
        return entry

    # -- queries ---------------------------------------------------------------

    def query(self, kind: str | None = None, label: str | None = None) -> list[AuditEntry]:
        """Entries filtered by kind and/or label."""
        found = self._entries
        if kind is not None:
            found = [e for e in found if e.kind == kind]
        if label is not None:
            found = [e for e in found if e.label == label]
        return list(found)

    @property
    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    @property
    def results(self) -> list[AgentResult]:
        """Every recorded member result across all rounds."""
        return [r for e in self._entries if e.kind == ROUND for r in e.results]

    @property
    def decisions(self) -> list[ConsensusDecision]:
        return [e.decision for e in self._entries if e.decision is not None]

    @property
    def tiers(self) -> list[TierOutcome]:
        return [e.tier for e in self._entries if e.tier is not None]

    @property
    def iterations(self) -> list[Iteration]:
        return [e.iteration for e in self._entries if e.iteration is not None]

    def metrics(self) -> FleetMetrics:
        """Aggregate counters and latencies over the recorded run."""
        metrics = FleetMetrics()
        for entry in self._entries:
            if entry.kind == ROUND:
                metrics.record_round(entry.results)
            elif entry.decision is not None:
                metrics.record_decision(entry.decision)
        return metrics

    def __len__(self) -> int:
        return len(self._entries)

    # -- serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain data (outputs are kept as-is)."""
        entries: list[dict[str, Any]] = []
        for e in self._entries:
            d: dict[str, Any] = {"kind": e.kind, "label": e.label, "timestamp": e.timestamp}
            if e.results:
                d["results"] = [r.to_dict() for r in e.results]
            if e.decision is not None:
                d["decision"] = decision_to_dict(e.decision)
            if e.tier is not None:
                d["tier"] = {
                    "index": e.tier.tier,
                    "skipped": e.tier.skipped,
                    "forwarded": e.tier.forwarded,
                    "failure": e.tier.failure,
                }
            if e.iteration is not None:
                d["iteration"] = {
                    "index": e.iteration.index,
                    "plan": [
                        {"worker": s.worker, "input": s.input, "step_id": s.step_id}
                        for s in e.iteration.plan
                    ],
                    "confidence": e.iteration.confidence,
                    "findings": len(e.iteration.findings),
                }
            entries.append(d)
        return {"run_id": self.run_id, "entries": entries}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)
