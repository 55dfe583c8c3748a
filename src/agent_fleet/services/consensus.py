"""Consensus engine: reduce one round of member results to a decision.

Each algorithm is a ``BaseConsensusAlgorithm`` registered in the component
registry under the ``"consensus"`` category, keyed by its
``ConsensusAlgorithm`` value.  ``ConsensusEngine.resolve`` applies the quorum
rule shared by every algorithm and then delegates to the registered one.

Resolution is a pure function of its inputs: the same results and
configuration always give an equal ``ConsensusDecision``.

Classes
-------
BaseConsensusAlgorithm
    Abstract algorithm interface.
FirstWinsAlgorithm, MajorityAlgorithm, WeightedAlgorithm,
UnanimousAlgorithm, HumanReviewAlgorithm
    Built-in algorithms.
ConsensusEngine
    Quorum handling plus algorithm lookup.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from agent_fleet.domain.enums import ConsensusAlgorithm, NoDecisionReason
from agent_fleet.domain.values import AgentResult, ConsensusDecision, FleetMember, output_key
from agent_fleet.infrastructure.config import ConsensusConfig
from agent_fleet.infrastructure.registry import CONSENSUS, ComponentRegistry, registry

logger = logging.getLogger(__name__)


# ===================================================================== #
#  Ballot: grouping of equal outputs                                     #
# ===================================================================== #

@dataclass
class VoteGroup:
    """Completed results that produced the same output."""

    key: str
    output: Any
    results: list[AgentResult] = field(default_factory=list)
    weight: float = 0.0
    rank: int = 0  # declaration index of the earliest member in the group

    @property
    def size(self) -> int:
        return len(self.results)

    @property
    def member_ids(self) -> tuple[str, ...]:
        return tuple(r.member_id for r in self.results)


class Ballot:
    """Completed results of a round grouped by output equality.

    Parameters
    ----------
    completed:
        Completed results in arrival order.
    cfg:
        Consensus configuration (for the weight map).
    members:
        Declared members, used for weights and declaration-order tie
        breaking.  Without them arrival order breaks ties.
    """

    def __init__(
        self,
        completed: Sequence[AgentResult],
        cfg: ConsensusConfig,
        members: Sequence[FleetMember] = (),
    ) -> None:
        self.completed = tuple(completed)
        self._declared = {m.member_id: i for i, m in enumerate(members)}
        self._weights = {
            m.member_id: m.weight for m in members if m.weight is not None
        }
        self._cfg = cfg
        self.groups: list[VoteGroup] = []
        by_key: dict[str, VoteGroup] = {}
        for arrival, result in enumerate(self.completed):
            key = output_key(result.output)
            group = by_key.get(key)
            if group is None:
                group = VoteGroup(key=key, output=result.output, rank=self._rank(result, arrival))
                by_key[key] = group
                self.groups.append(group)
            group.results.append(result)
            group.weight += self.weight_of(result.member_id)
            group.rank = min(group.rank, self._rank(result, arrival))

    def _rank(self, result: AgentResult, arrival: int) -> int:
        return self._declared.get(result.member_id, len(self._declared) + arrival)

    def weight_of(self, member_id: str) -> float:
        """Member weight, then the configured weight map, then 1.0."""
        if member_id in self._weights:
            return float(self._weights[member_id])
        return float(self._cfg.weights.get(member_id, 1.0))

    @property
    def total_weight(self) -> float:
        return math.fsum(self.weight_of(r.member_id) for r in self.completed)

    def plurality(self) -> VoteGroup | None:
        """Largest group; ties go to the group declared earliest."""
        if not self.groups:
            return None
        return min(self.groups, key=lambda g: (-g.size, g.rank))

    def heaviest(self) -> VoteGroup | None:
        """Group with the highest weight sum; ties go to the earliest declared."""
        if not self.groups:
            return None
        return min(self.groups, key=lambda g: (-g.weight, g.rank))

    def group_of(self, output: Any) -> VoteGroup | None:
        key = output_key(output)
        for group in self.groups:
            if group.key == key:
                return group
        return None

    def dissent_from(self, group: VoteGroup | None) -> tuple[str, ...]:
        """Members whose completed output differs from *group*'s output."""
        if group is None:
            return ()
        return tuple(r.member_id for r in self.completed if output_key(r.output) != group.key)

    def share(self, group: VoteGroup) -> float:
        return group.size / len(self.completed) if self.completed else 0.0


# ===================================================================== #
#  Algorithms                                                            #
# ===================================================================== #

class BaseConsensusAlgorithm(ABC):
    """Strategy that turns a quorate ballot into a decision."""

    algorithm: ConsensusAlgorithm

    def should_stop_early(
        self,
        results: Sequence[AgentResult],
        cfg: ConsensusConfig,
        dispatched: int,
    ) -> bool:
        """Return ``True`` when the round may stop before every member reports."""
        return False

    @abstractmethod
    def decide(
        self,
        ballot: Ballot,
        results: tuple[AgentResult, ...],
        cfg: ConsensusConfig,
    ) -> ConsensusDecision:
        """Produce a decision from *ballot*; *results* is the full round."""

    def _no_decision(
        self,
        reason: NoDecisionReason,
        explanation: str,
        results: tuple[AgentResult, ...],
        dissenting: tuple[str, ...],
    ) -> ConsensusDecision:
        return ConsensusDecision.no_decision(
            self.algorithm, reason, explanation, results, dissenting
        )

    def _empty_ballot(self, results: tuple[AgentResult, ...]) -> ConsensusDecision:
        return self._no_decision(
            NoDecisionReason.INSUFFICIENT_VOTES,
            f"no completed results among {len(results)}",
            results,
            (),
        )


@registry.register(CONSENSUS, ConsensusAlgorithm.FIRST_WINS)
class FirstWinsAlgorithm(BaseConsensusAlgorithm):
    """Take the first completed result in arrival order."""

    algorithm = ConsensusAlgorithm.FIRST_WINS

    def should_stop_early(
        self,
        results: Sequence[AgentResult],
        cfg: ConsensusConfig,
        dispatched: int,
    ) -> bool:
        completed = sum(1 for r in results if r.completed)
        return completed >= cfg.quorum(dispatched)

    def decide(
        self,
        ballot: Ballot,
        results: tuple[AgentResult, ...],
        cfg: ConsensusConfig,
    ) -> ConsensusDecision:
        if not ballot.completed:
            return self._empty_ballot(results)
        first = ballot.completed[0]
        group = ballot.group_of(first.output)
        if group is None:
            return self._empty_ballot(results)
        return ConsensusDecision.reached(
            self.algorithm,
            output=first.output,
            confidence=ballot.share(group),
            results=results,
            dissenting=ballot.dissent_from(group),
            explanation=f"first completed result came from '{first.member_id}'",
        )


@registry.register(CONSENSUS, ConsensusAlgorithm.MAJORITY)
class MajorityAlgorithm(BaseConsensusAlgorithm):
    """Require strictly more than half of the completed results to agree."""

    algorithm = ConsensusAlgorithm.MAJORITY

    def decide(
        self,
        ballot: Ballot,
        results: tuple[AgentResult, ...],
        cfg: ConsensusConfig,
    ) -> ConsensusDecision:
        leader = ballot.plurality()
        if leader is None:
            return self._empty_ballot(results)
        total = len(ballot.completed)
        if leader.size * 2 > total:
            return ConsensusDecision.reached(
                self.algorithm,
                output=leader.output,
                confidence=ballot.share(leader),
                results=results,
                dissenting=ballot.dissent_from(leader),
                explanation=f"{leader.size} of {total} completed results agree",
            )
        return self._no_decision(
            NoDecisionReason.NO_MAJORITY,
            f"largest group has {leader.size} of {total} completed results; "
            f"more than {total // 2} required",
            results,
            ballot.dissent_from(leader),
        )


@registry.register(CONSENSUS, ConsensusAlgorithm.WEIGHTED)
class WeightedAlgorithm(BaseConsensusAlgorithm):
    """Pick the output with the largest weight sum, subject to ``min_confidence``."""

    algorithm = ConsensusAlgorithm.WEIGHTED

    def decide(
        self,
        ballot: Ballot,
        results: tuple[AgentResult, ...],
        cfg: ConsensusConfig,
    ) -> ConsensusDecision:
        leader = ballot.heaviest()
        if leader is None:
            return self._empty_ballot(results)
        total = ballot.total_weight
        share = leader.weight / total if total > 0 else 0.0
        share = min(1.0, max(0.0, share))
        if share < cfg.min_confidence:
            return self._no_decision(
                NoDecisionReason.BELOW_MIN_CONFIDENCE,
                f"leading output holds {leader.weight:g} of {total:g} weight "
                f"({share:.3f}); min_confidence is {cfg.min_confidence:g}",
                results,
                ballot.dissent_from(leader),
            )
        return ConsensusDecision.reached(
            self.algorithm,
            output=leader.output,
            confidence=share,
            results=results,
            dissenting=ballot.dissent_from(leader),
            explanation=f"leading output holds {leader.weight:g} of {total:g} weight",
        )


@registry.register(CONSENSUS, ConsensusAlgorithm.UNANIMOUS)
class UnanimousAlgorithm(BaseConsensusAlgorithm):
    """Decide only when every completed result agrees."""

    algorithm = ConsensusAlgorithm.UNANIMOUS

    def decide(
        self,
        ballot: Ballot,
        results: tuple[AgentResult, ...],
        cfg: ConsensusConfig,
    ) -> ConsensusDecision:
        leader = ballot.plurality()
        if leader is None:
            return self._empty_ballot(results)
        if len(ballot.groups) == 1:
            return ConsensusDecision.reached(
                self.algorithm,
                output=leader.output,
                confidence=1.0,
                results=results,
                explanation=f"all {leader.size} completed results agree",
            )
        dissent = ballot.dissent_from(leader)
        return self._no_decision(
            NoDecisionReason.DISAGREEMENT,
            f"{len(ballot.groups)} distinct outputs; dissenting: {', '.join(dissent)}",
            results,
            dissent,
        )


@registry.register(CONSENSUS, ConsensusAlgorithm.HUMAN_REVIEW)
class HumanReviewAlgorithm(BaseConsensusAlgorithm):
    """Never decide automatically; hand the round to an approver."""

    algorithm = ConsensusAlgorithm.HUMAN_REVIEW

    def decide(
        self,
        ballot: Ballot,
        results: tuple[AgentResult, ...],
        cfg: ConsensusConfig,
    ) -> ConsensusDecision:
        leader = ballot.plurality()
        if leader is None:
            return self._empty_ballot(results)
        return self._no_decision(
            NoDecisionReason.PENDING_HUMAN_REVIEW,
            f"awaiting human review; proposed output backed by {leader.size} of "
            f"{len(ballot.completed)} completed results",
            results,
            ballot.dissent_from(leader),
        )


# ===================================================================== #
#  Engine                                                                #
# ===================================================================== #

def arrival_order(results: Sequence[AgentResult]) -> tuple[AgentResult, ...]:
    return tuple(sorted(results, key=lambda r: r.arrival_key))


class ConsensusEngine:
    """Resolve rounds of results with a registered consensus algorithm.

    Parameters
    ----------
    components:
        Registry to look algorithms up in.  Defaults to the module-level
        registry holding the built-in algorithms.
    """

    def __init__(self, components: ComponentRegistry | None = None) -> None:
        self._registry = components or registry

    def algorithm_for(self, algorithm: ConsensusAlgorithm) -> BaseConsensusAlgorithm:
        return self._registry.create(CONSENSUS, algorithm)

    def should_stop_early(
        self,
        results: Sequence[AgentResult],
        cfg: ConsensusConfig,
        dispatched: int,
    ) -> bool:
        return self.algorithm_for(cfg.algorithm).should_stop_early(results, cfg, dispatched)

    def resolve(
        self,
        results: Sequence[AgentResult],
        cfg: ConsensusConfig,
        members: Sequence[FleetMember] = (),
    ) -> ConsensusDecision:
        """Reduce *results* to a single decision.

        Parameters
        ----------
        results:
            Every result of the round, in any order.
        cfg:
            Consensus configuration for the round.
        members:
            Declared members (weights and tie breaking).

        Returns
        -------
        ConsensusDecision
            A reached decision, or a decision without output carrying a
            ``NoDecisionReason``.
        """
        cfg.validate()
        ordered = arrival_order(results)
        completed = [r for r in ordered if r.completed]
        ballot = Ballot(completed, cfg, members)
        quorum = cfg.quorum(len(ordered))

        if len(completed) < quorum and not (cfg.allow_partial and completed):
            logger.info(
                "Consensus (%s): %d of %d completed, %d required",
                cfg.algorithm.value,
                len(completed),
                len(ordered),
                quorum,
            )
            return ConsensusDecision.no_decision(
                cfg.algorithm,
                NoDecisionReason.INSUFFICIENT_VOTES,
                f"{len(completed)} of {len(ordered)} results completed; "
                f"{quorum} required",
                ordered,
                ballot.dissent_from(ballot.plurality()),
            )

        decision = self.algorithm_for(cfg.algorithm).decide(ballot, ordered, cfg)
        logger.debug(
            "Consensus (%s): decided=%s confidence=%.3f dissent=%s",
            cfg.algorithm.value,
            decision.decided,
            decision.confidence,
            decision.dissenting,
        )
        return decision
