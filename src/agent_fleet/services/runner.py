"""Invocation boundary for fleet runs.

``FleetRunner`` picks the controller for a spec's coordination mode (the
fleet executor for peer / hierarchical / pipeline / swarm, the tiered
coordinator, or the deep investigator), wraps the run in start / completion
events and returns a ``FleetRunResult`` carrying the decision or report and
the run's full audit trail.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from agent_fleet.domain.entities import FleetMetrics, FleetSpec
from agent_fleet.domain.enums import CoordinationMode, ReportStatus
from agent_fleet.domain.events import DomainEvent, FleetRunCompleted, FleetRunStarted
from agent_fleet.domain.values import (
    AgentResult,
    ConsensusDecision,
    FinalReport,
    Iteration,
    TierOutcome,
)
from agent_fleet.infrastructure.config import ExecutorConfig
from agent_fleet.infrastructure.context_store import SharedContextStore
from agent_fleet.infrastructure.event_bus import AsyncEventBus
from agent_fleet.services.approval import BaseApprover
from agent_fleet.services.audit_trail import FleetAuditTrail
from agent_fleet.services.context import RunContext
from agent_fleet.services.deep import DeepInvestigator
from agent_fleet.services.executor import FleetExecutor
from agent_fleet.services.invoker import BaseAgentInvoker
from agent_fleet.services.tiered import TieredCoordinator

logger = logging.getLogger(__name__)


@dataclass
class FleetRunResult:
    """Everything a caller gets back from one fleet run."""

    spec_name: str
    mode: CoordinationMode
    decision: ConsensusDecision | None = None
    report: FinalReport | None = None
    results: tuple[AgentResult, ...] = ()
    iterations: tuple[Iteration, ...] = ()
    tiers: tuple[TierOutcome, ...] = ()
    metrics: FleetMetrics = field(default_factory=FleetMetrics)
    events: tuple[DomainEvent, ...] = ()
    elapsed_seconds: float = 0.0
    run_id: str = ""
    audit: FleetAuditTrail | None = None

    @property
    def output(self) -> Any:
        if self.report is not None:
            return self.report.output
        if self.decision is not None:
            return self.decision.output
        return None

    @property
    def decided(self) -> bool:
        """True when the run produced a usable, non-partial answer."""
        if self.report is not None:
            status = self.report.status
            return not self.report.is_partial and status is not ReportStatus.NO_DECISION
        return self.decision is not None and self.decision.decided


class FleetRunner:
    """Run fleets end to end.

    Parameters
    ----------
    invoker:
        Collaborator that runs individual members.
    executor_config:
        Concurrency, member timeout and swarm distribution settings.
    approver:
        Optional approval collaborator for ``human_review`` consensus.
    event_bus:
        Bus attached to contexts the runner creates.
    shared_store:
        Optional shared context store attached to created contexts.
    persist_namespace:
        When set together with *shared_store*, each run's final output is
        stored under ``(persist_namespace, spec.name)``.
    """

    def __init__(
        self,
        invoker: BaseAgentInvoker,
        executor_config: ExecutorConfig | None = None,
        approver: BaseApprover | None = None,
        event_bus: AsyncEventBus | None = None,
        shared_store: SharedContextStore | None = None,
        persist_namespace: str | None = None,
    ) -> None:
        self.executor = FleetExecutor(invoker, executor_config, approver=approver)
        self._event_bus = event_bus
        self._shared_store = shared_store
        self._persist_namespace = persist_namespace

    def new_context(self, timeout: float | None = None) -> RunContext:
        return RunContext.with_timeout(
            timeout, event_bus=self._event_bus, shared_store=self._shared_store
        )

    async def run(
        self,
        spec: FleetSpec,
        task_input: Any,
        *,
        subtasks: Sequence[Any] | None = None,
        context: RunContext | None = None,
    ) -> FleetRunResult:
        """Validate *spec* and run it over *task_input*.

        Raises
        ------
        InvalidSpecError
            Before any member is dispatched, when *spec* is invalid.
        InsufficientVotesError
            When a round (or non-optional tier) cannot reach its quorum and
            partial results are not allowed.
        """
        spec.validate()
        context = context if context is not None else self.new_context()
        started = time.monotonic()
        await context.emit(
            FleetRunStarted(
                source_id=context.run_id,
                fleet_name=spec.name,
                mode=spec.mode,
                member_count=len(spec.members),
            )
        )
        try:
            outcome = await self._dispatch(spec, task_input, subtasks, context)
        except Exception as exc:
            await context.emit(
                FleetRunCompleted(
                    source_id=context.run_id,
                    fleet_name=spec.name,
                    decided=False,
                    elapsed_seconds=time.monotonic() - started,
                    error=str(exc),
                )
            )
            raise

        outcome.elapsed_seconds = time.monotonic() - started
        await context.emit(
            FleetRunCompleted(
                source_id=context.run_id,
                fleet_name=spec.name,
                decided=outcome.decided,
                elapsed_seconds=outcome.elapsed_seconds,
            )
        )
        self._persist(spec, outcome, context)
        outcome.events = context.event_store.snapshot()
        logger.info(
            "Fleet %s (%s) finished in %.3fs: decided=%s",
            spec.name,
            spec.mode.value,
            outcome.elapsed_seconds,
            outcome.decided,
        )
        return outcome

    async def _dispatch(
        self,
        spec: FleetSpec,
        task_input: Any,
        subtasks: Sequence[Any] | None,
        context: RunContext,
    ) -> FleetRunResult:
        base = {"spec_name": spec.name, "mode": spec.mode, "run_id": context.run_id}
        if spec.mode is CoordinationMode.TIERED:
            tiered = TieredCoordinator.for_spec(self.executor, spec)
            outcome = await tiered.run_tiers(spec.tiers(), task_input, context=context)
            return FleetRunResult(
                **base,
                decision=outcome.decision,
                report=outcome.report,
                results=outcome.results,
                tiers=outcome.tiers,
                metrics=context.audit.metrics(),
                audit=context.audit,
            )
        if spec.mode is CoordinationMode.DEEP:
            investigator = DeepInvestigator.for_spec(self.executor, spec)
            report, state = await investigator.investigate(spec.deep, task_input, context=context)
            return FleetRunResult(
                **base,
                decision=report.decision,
                report=report,
                results=tuple(investigator.last_results),
                iterations=tuple(state.iterations),
                metrics=context.audit.metrics(),
                audit=context.audit,
            )
        decision, results = await self.executor.run(
            spec, task_input, subtasks=subtasks, context=context
        )
        return FleetRunResult(
            **base,
            decision=decision,
            results=results,
            metrics=context.audit.metrics(),
            audit=context.audit,
        )

    def _persist(self, spec: FleetSpec, outcome: FleetRunResult, context: RunContext) -> None:
        store = context.shared_store or self._shared_store
        if store is None or self._persist_namespace is None:
            return
        store.put(
            spec.name, outcome.output, namespace=self._persist_namespace, source=context.run_id
        )
        logger.debug("Persisted output of %s under %s", spec.name, self._persist_namespace)


async def run_fleet(
    spec: FleetSpec,
    task_input: Any,
    invoker: BaseAgentInvoker,
    *,
    subtasks: Sequence[Any] | None = None,
    context: RunContext | None = None,
    **kwargs: Any,
) -> FleetRunResult:
    """Convenience wrapper: build a ``FleetRunner`` from *kwargs* and run once."""
    runner = FleetRunner(invoker, **kwargs)
    return await runner.run(spec, task_input, subtasks=subtasks, context=context)
