"""Tiered pipeline coordination.

Tiers run strictly in index order.  Each tier is a peer round through the
fleet executor with its own consensus configuration; what it forwards (its
decision, or every raw result) is appended to the accumulated context that
the next tier receives.  The last tier is turned into a ``FinalReport`` by the
configured final aggregation.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from agent_fleet.domain.entities import FleetSpec
from agent_fleet.domain.enums import FinalAggregation, NoDecisionReason, ReportStatus
from agent_fleet.domain.events import TierCompleted
from agent_fleet.domain.exceptions import InsufficientVotesError
from agent_fleet.domain.values import (
    AgentResult,
    ConsensusDecision,
    FinalReport,
    FleetMember,
    TierOutcome,
    TierSpec,
)
from agent_fleet.infrastructure.config import TieredConfig
from agent_fleet.services.context import RunContext
from agent_fleet.services.executor import FleetExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TieredOutcome:
    """Report plus the per-tier history of a tiered run."""

    report: FinalReport
    tiers: tuple[TierOutcome, ...] = ()
    results: tuple[AgentResult, ...] = ()
    accumulated: dict[str, Any] = field(default_factory=dict)

    @property
    def decision(self) -> ConsensusDecision | None:
        return self.report.decision


class TieredCoordinator:
    """Run ordered tiers and aggregate the last one into a report.

    Parameters
    ----------
    executor:
        Executor used to dispatch each tier as a peer round.
    config:
        Final aggregation settings.
    members:
        Every member of the fleet, used to look up the synthesizer.
    fleet_name:
        Name used in logs and approval requests.
    """

    def __init__(
        self,
        executor: FleetExecutor,
        config: TieredConfig | None = None,
        members: Sequence[FleetMember] = (),
        fleet_name: str = "",
    ) -> None:
        self._executor = executor
        self._config = config or TieredConfig()
        self._config.validate()
        self._members = {m.member_id: m for m in members}
        self._fleet_name = fleet_name

    @classmethod
    def for_spec(cls, executor: FleetExecutor, spec: FleetSpec) -> TieredCoordinator:
        return cls(executor, spec.tiered, spec.members, spec.name)

    async def run_tiers(
        self,
        tiers: Sequence[TierSpec],
        task_input: Any,
        *,
        context: RunContext | None = None,
    ) -> TieredOutcome:
        """Execute *tiers* in index order over *task_input*.

        Raises
        ------
        InsufficientVotesError
            When a non-optional tier cannot reach its quorum.  The tier index
            is in ``details["tier"]``.
        """
        context = context if context is not None else RunContext()
        ordered = sorted(tiers, key=lambda t: t.index)
        accumulated: dict[str, Any] = {"task": task_input, "tiers": []}
        outcomes: list[TierOutcome] = []
        all_results: list[AgentResult] = []

        for tier in ordered:
            if context.should_stop:
                logger.info("Tiered run interrupted before %s", tier.label)
                report = FinalReport(
                    output=copy.deepcopy(accumulated),
                    status=ReportStatus.INTERRUPTED,
                    source="tiered",
                    notes=(f"interrupted before {tier.label}",),
                )
                return self._outcome(report, outcomes, all_results, accumulated)

            snapshot = copy.deepcopy(accumulated)
            try:
                results = await self._executor.dispatch_peer(
                    tier.members,
                    snapshot,
                    tier.consensus,
                    context,
                    label=tier.label,
                    early_stop=not tier.pass_all_results,
                )
            except InsufficientVotesError as exc:
                all_results.extend(exc.results)
                outcome = self._quorum_failure(tier, exc.results, exc.completed, all_results, exc)
                await self._finish_tier(outcome, accumulated, outcomes, context)
                continue
            all_results.extend(results)
            completed = sum(1 for r in results if r.completed)

            if tier.pass_all_results:
                if completed == 0:
                    outcome = self._quorum_failure(tier, results, completed, all_results)
                else:
                    outcome = TierOutcome(
                        tier=tier.index,
                        decision=None,
                        results=tuple(results),
                        forwarded=[r.to_dict() for r in results],
                    )
                await self._finish_tier(outcome, accumulated, outcomes, context)
                continue

            decision = await self._executor.decide(
                results,
                tier.consensus,
                tier.members,
                context,
                fleet_name=self._fleet_name,
                label=tier.label,
            )
            if decision.decided:
                outcome = TierOutcome(
                    tier=tier.index,
                    decision=decision,
                    results=tuple(results),
                    forwarded=decision.output,
                )
            elif decision.reason is NoDecisionReason.INSUFFICIENT_VOTES:
                outcome = replace(
                    self._quorum_failure(tier, results, completed, all_results),
                    decision=decision,
                )
            elif tier.optional:
                logger.warning(
                    "Optional %s reached no decision (%s); skipped",
                    tier.label,
                    decision.reason.value if decision.reason else "-",
                )
                outcome = TierOutcome(
                    tier=tier.index,
                    decision=decision,
                    results=tuple(results),
                    skipped=True,
                    failure=decision.explanation,
                )
            else:
                outcome = TierOutcome(
                    tier=tier.index,
                    decision=decision,
                    results=tuple(results),
                    failure=decision.explanation,
                )
                await self._finish_tier(outcome, accumulated, outcomes, context, forward=False)
                logger.info("Tiered run stopped at %s: %s", tier.label, decision.explanation)
                report = FinalReport(
                    output=None,
                    status=ReportStatus.NO_DECISION,
                    source=tier.label,
                    decision=decision,
                    notes=(f"{tier.label}: {decision.explanation}",),
                )
                return self._outcome(report, outcomes, all_results, accumulated)
            await self._finish_tier(outcome, accumulated, outcomes, context)

        report = await self._aggregate(ordered, outcomes, accumulated, context)
        return self._outcome(report, outcomes, all_results, accumulated)

    # -- helpers ---------------------------------------------------------------

    @staticmethod
    def _outcome(
        report: FinalReport,
        outcomes: list[TierOutcome],
        results: list[AgentResult],
        accumulated: dict[str, Any],
    ) -> TieredOutcome:
        return TieredOutcome(
            report=report,
            tiers=tuple(outcomes),
            results=tuple(results),
            accumulated=copy.deepcopy(accumulated),
        )

    @staticmethod
    def _quorum_failure(
        tier: TierSpec,
        results: Sequence[AgentResult],
        completed: int,
        all_results: Sequence[AgentResult],
        cause: InsufficientVotesError | None = None,
    ) -> TierOutcome:
        required = tier.consensus.quorum(len(tier.members))
        message = (
            f"{tier.label}: {completed} of {len(tier.members)} members completed; "
            f"{required} required"
        )
        if not tier.optional:
            raise InsufficientVotesError(
                message,
                min_votes=required,
                completed=completed,
                results=all_results,
                details={"tier": tier.index, "tier_name": tier.label},
            ) from cause
        logger.warning("Optional %s skipped", message)
        return TierOutcome(
            tier=tier.index,
            decision=None,
            results=tuple(results),
            forwarded=[] if tier.pass_all_results else None,
            skipped=True,
            failure=message,
        )

    async def _finish_tier(
        self,
        outcome: TierOutcome,
        accumulated: dict[str, Any],
        outcomes: list[TierOutcome],
        context: RunContext,
        forward: bool = True,
    ) -> None:
        if forward:
            accumulated["tiers"].append(copy.deepcopy(outcome.forwarded))
        outcomes.append(outcome)
        context.audit.record_tier(outcome)
        forwarded_count = (
            len(outcome.forwarded) if isinstance(outcome.forwarded, list) else int(forward)
        )
        await context.emit(
            TierCompleted(
                source_id=context.run_id,
                tier=outcome.tier,
                forwarded_count=forwarded_count,
                skipped=outcome.skipped,
            )
        )
        logger.info(
            "Tier %d complete (skipped=%s, forwarded=%d)",
            outcome.tier,
            outcome.skipped,
            forwarded_count,
        )

    async def _aggregate(
        self,
        tiers: Sequence[TierSpec],
        outcomes: Sequence[TierOutcome],
        accumulated: dict[str, Any],
        context: RunContext,
    ) -> FinalReport:
        aggregation = self._config.final_aggregation
        if not outcomes:
            return FinalReport(output=None, status=ReportStatus.NO_DECISION, source="tiered")
        last_tier = tiers[-1]
        last = outcomes[-1]

        if aggregation is FinalAggregation.MANAGER_SYNTHESIS:
            return await self._synthesize(accumulated, last, context)

        if aggregation is FinalAggregation.MERGE:
            completed = [r for r in last.results if r.completed]
            dispatched = len(last.results)
            return FinalReport(
                output=[r.output for r in completed],
                status=ReportStatus.COMPLETE if completed else ReportStatus.NO_DECISION,
                confidence=len(completed) / dispatched if dispatched else 0.0,
                source=FinalAggregation.MERGE.value,
                decision=last.decision,
            )

        decision = last.decision
        if last_tier.pass_all_results and not last.skipped:
            # the forwarded result set is the answer; nothing left to vote on
            completed = sum(1 for r in last.results if r.completed)
            dispatched = len(last.results)
            return FinalReport(
                output=copy.deepcopy(last.forwarded),
                status=ReportStatus.COMPLETE,
                confidence=completed / dispatched if dispatched else 0.0,
                source=last_tier.label,
            )
        if decision is None or not decision.decided:
            return FinalReport(
                output=None,
                status=ReportStatus.NO_DECISION,
                source=FinalAggregation.CONSENSUS.value,
                decision=decision,
                notes=(last.failure,) if last.failure else (),
            )
        return FinalReport(
            output=decision.output,
            status=ReportStatus.COMPLETE,
            confidence=decision.confidence,
            source=FinalAggregation.CONSENSUS.value,
            decision=decision,
        )

    async def _synthesize(
        self,
        accumulated: dict[str, Any],
        last: TierOutcome,
        context: RunContext,
    ) -> FinalReport:
        synthesizer_id = self._config.synthesizer or ""
        member = self._members.get(synthesizer_id)
        if member is None:
            return FinalReport(
                output=copy.deepcopy(accumulated),
                status=ReportStatus.SYNTHESIS_FAILED,
                source=synthesizer_id,
                decision=last.decision,
                notes=(f"unknown synthesizer '{synthesizer_id}'",),
            )
        result = await self._executor.invoke_one(
            member,
            accumulated,
            context,
            context.round_deadline(None),
            label="synthesis",
            task_id="synthesis",
        )
        if not result.completed:
            logger.warning("Synthesizer %s failed: %s", synthesizer_id, result.error)
            return FinalReport(
                output=copy.deepcopy(accumulated),
                status=ReportStatus.SYNTHESIS_FAILED,
                source=synthesizer_id,
                decision=last.decision,
                notes=(result.error,),
            )
        confidence = result.confidence
        if confidence is None:
            confidence = last.decision.confidence if last.decision else 0.0
        return FinalReport(
            output=result.output,
            status=ReportStatus.COMPLETE,
            confidence=confidence,
            source=synthesizer_id,
            decision=last.decision,
        )
