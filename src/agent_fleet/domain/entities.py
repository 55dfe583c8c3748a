"""Domain entities for the agent fleet engine.

``FleetSpec`` is the declared, validated description of a fleet.  It has
identity (its ``name``) and owns the rules for what a well-formed fleet looks
like.  ``InvestigationState`` and ``FleetMetrics`` are mutable aggregates owned
by a single run.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from agent_fleet.infrastructure.config import ConsensusConfig, DeepConfig, TieredConfig

from .enums import AgentRole, CoordinationMode, InvestigationStopReason, ResultStatus
from .exceptions import InvalidSpecError
from .values import AgentResult, ConsensusDecision, FleetMember, Iteration, TierSpec

# ---------------------------------------------------------------------------
# FleetSpec
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FleetSpec:
    """Declared description of a fleet: members, topology and consensus.

    A spec is immutable for the duration of a run.  ``validate()`` must pass
    before anything is dispatched; ``from_dict`` validates on construction.
    """

    name: str
    members: tuple[FleetMember, ...]
    mode: CoordinationMode = CoordinationMode.PEER
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    tiered: TieredConfig | None = None
    deep: DeepConfig | None = None
    manager: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    # -- validation ------------------------------------------------------------

    def validate(self) -> None:
        """Raise ``InvalidSpecError`` listing every violated invariant."""
        issues: list[str] = []

        if not self.members:
            issues.append("a fleet needs at least one member")

        seen: set[str] = set()
        for member in self.members:
            if not member.member_id:
                issues.append("member ids must be non-empty")
            elif member.member_id in seen:
                issues.append(f"duplicate member id '{member.member_id}'")
            seen.add(member.member_id)

        for label, cfg in (
            ("consensus", self.consensus),
            ("tiered", self.tiered),
            ("deep", self.deep),
        ):
            if cfg is None:
                continue
            try:
                cfg.validate()
            except ValueError as exc:
                issues.append(f"{label}: {exc}")

        if self.consensus.min_votes is not None and self.consensus.min_votes > len(self.members):
            issues.append(
                f"consensus.min_votes ({self.consensus.min_votes}) exceeds "
                f"member count ({len(self.members)})"
            )

        if self.mode is CoordinationMode.TIERED:
            issues.extend(self._tier_issues())
        elif self.mode is CoordinationMode.HIERARCHICAL:
            if self.get_manager() is None:
                issues.append("hierarchical mode requires a manager member")
            elif not self.specialists():
                issues.append("hierarchical mode requires at least one specialist")
        elif self.mode is CoordinationMode.DEEP:
            if self.deep is None:
                issues.append("deep mode requires a deep configuration")
            else:
                for member_id in self.deep.member_ids():
                    if member_id and member_id not in seen:
                        issues.append(f"deep configuration names unknown member '{member_id}'")

        if issues:
            raise InvalidSpecError(
                f"Fleet '{self.name}' is invalid: " + "; ".join(issues),
                spec_name=self.name,
                issues=issues,
            )

    def _tier_issues(self) -> list[str]:
        issues: list[str] = []
        missing = [m.member_id for m in self.members if m.tier is None]
        if missing:
            issues.append(f"tiered mode requires a tier index on every member: {missing}")
            return issues
        indices = self.tier_indices()
        if indices and indices != list(range(len(indices))):
            issues.append(f"tier indices must be contiguous from 0, got {indices}")
        if self.tiered is not None:
            declared = (
                *self.tiered.pass_all_tiers,
                *self.tiered.optional_tiers,
                *self.tiered.tier_consensus,
            )
            for index in declared:
                if index not in indices:
                    issues.append(f"tier {index} is configured but has no members")
            if self.tiered.synthesizer and self.get_member(self.tiered.synthesizer) is None:
                issues.append(f"unknown synthesizer member '{self.tiered.synthesizer}'")
            for index, cfg in self.tiered.tier_consensus.items():
                size = len(self.members_by_tier(index))
                if cfg.min_votes is not None and size and cfg.min_votes > size:
                    issues.append(
                        f"tier {index} min_votes ({cfg.min_votes}) exceeds its "
                        f"member count ({size})"
                    )
        return issues

    # -- lookup helpers --------------------------------------------------------

    def get_member(self, member_id: str) -> FleetMember | None:
        for member in self.members:
            if member.member_id == member_id:
                return member
        return None

    def members_by_role(self, role: AgentRole) -> list[FleetMember]:
        return [m for m in self.members if m.role is role]

    def get_manager(self) -> FleetMember | None:
        """Return the explicit manager, else the first member with role manager."""
        if self.manager:
            return self.get_member(self.manager)
        managers = self.members_by_role(AgentRole.MANAGER)
        return managers[0] if managers else None

    def specialists(self) -> list[FleetMember]:
        """Every member other than the manager (hierarchical mode)."""
        manager = self.get_manager()
        manager_id = manager.member_id if manager else None
        return [m for m in self.members if m.member_id != manager_id]

    def tier_indices(self) -> list[int]:
        return sorted({m.tier for m in self.members if m.tier is not None})

    def members_by_tier(self, tier: int) -> list[FleetMember]:
        return [m for m in self.members if m.tier == tier]

    def declaration_index(self, member_id: str) -> int:
        for index, member in enumerate(self.members):
            if member.member_id == member_id:
                return index
        return len(self.members)

    def weight_for(self, member_id: str) -> float:
        """Voting weight: member weight, then the consensus map, then 1.0."""
        member = self.get_member(member_id)
        if member is not None and member.weight is not None:
            return member.weight
        return float(self.consensus.weights.get(member_id, 1.0))

    def tiers(self) -> list[TierSpec]:
        """Group members into ``TierSpec`` stages ordered by index."""
        tiered = self.tiered or TieredConfig()
        specs: list[TierSpec] = []
        for index in self.tier_indices():
            specs.append(
                TierSpec(
                    index=index,
                    members=tuple(self.members_by_tier(index)),
                    consensus=tiered.tier_consensus.get(index, self.consensus),
                    pass_all_results=tiered.forwards_all(index),
                    optional=tiered.is_optional(index),
                )
            )
        return specs

    # -- construction ----------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FleetSpec:
        """Build and validate a spec from plain, already-parsed data."""
        name = str(data.get("name", ""))
        try:
            members = tuple(FleetMember.from_dict(m) for m in data.get("members", ()))
            spec = cls(
                name=name,
                members=members,
                mode=CoordinationMode(data.get("mode", CoordinationMode.PEER.value)),
                consensus=ConsensusConfig.from_dict(data.get("consensus", {})),
                tiered=(
                    TieredConfig.from_dict(data["tiered"]) if data.get("tiered") else None
                ),
                deep=DeepConfig.from_dict(data["deep"]) if data.get("deep") else None,
                manager=data.get("manager"),
                metadata=dict(data.get("metadata", {})),
            )
        except (ValueError, TypeError) as exc:
            raise InvalidSpecError(
                f"Fleet '{name}' is invalid: {exc}", spec_name=name, issues=[str(exc)]
            ) from exc
        spec.validate()
        return spec


# ---------------------------------------------------------------------------
# InvestigationState
# ---------------------------------------------------------------------------

@dataclass
class InvestigationState:
    """Mutable record of one deep investigation, owned by its controller."""

    task: Any = None
    iterations: list[Iteration] = field(default_factory=list)
    findings: list[Any] = field(default_factory=list)
    confidence: float | None = None
    terminal: bool = False
    stop_reason: InvestigationStopReason | None = None

    @property
    def iterations_used(self) -> int:
        return len(self.iterations)

    def record(self, iteration: Iteration) -> None:
        self.iterations.append(iteration)
        self.findings = list(iteration.findings)
        self.confidence = iteration.confidence

    def stop(self, reason: InvestigationStopReason) -> None:
        self.terminal = True
        self.stop_reason = reason

    def all_results(self) -> list[AgentResult]:
        return [r for it in self.iterations for r in it.results]


# ---------------------------------------------------------------------------
# FleetMetrics
# ---------------------------------------------------------------------------

@dataclass
class FleetMetrics:
    """Counters and latency statistics accumulated over one run."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    cancelled: int = 0
    rounds: int = 0
    consensus_rounds: int = 0
    decisions_reached: int = 0
    durations: list[float] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    def record_round(self, results: Sequence[AgentResult]) -> None:
        self.rounds += 1
        for result in results:
            self.total += 1
            if result.status is ResultStatus.COMPLETED:
                self.completed += 1
                self.durations.append(result.duration)
            elif result.status is ResultStatus.FAILED:
                self.failed += 1
            elif result.status is ResultStatus.TIMED_OUT:
                self.timed_out += 1
            else:
                self.cancelled += 1

    def record_decision(self, decision: ConsensusDecision) -> None:
        self.consensus_rounds += 1
        if decision.decided:
            self.decisions_reached += 1

    @property
    def mean_duration(self) -> float:
        if not self.durations:
            return 0.0
        return float(np.mean(self.durations))

    @property
    def p95_duration(self) -> float:
        if not self.durations:
            return 0.0
        return float(np.percentile(self.durations, 95))

    @property
    def success_rate(self) -> float:
        return self.completed / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
            "rounds": self.rounds,
            "consensus_rounds": self.consensus_rounds,
            "decisions_reached": self.decisions_reached,
            "mean_duration": self.mean_duration,
            "p95_duration": self.p95_duration,
            "success_rate": self.success_rate,
        }
