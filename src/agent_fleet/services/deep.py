"""Deep investigation controller.

Runs the bounded plan / execute / evaluate loop on the LangGraph built in
:mod:`agent_fleet.graph` and returns the synthesized ``FinalReport`` together
with the controller-owned ``InvestigationState``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from agent_fleet.domain.entities import FleetSpec, InvestigationState
from agent_fleet.domain.enums import InvestigationPhase, InvestigationStopReason, ReportStatus
from agent_fleet.domain.exceptions import InvalidSpecError
from agent_fleet.domain.values import AgentResult, FinalReport, FleetMember
from agent_fleet.graph import InvestigationRuntime, build_investigation_graph, recursion_limit
from agent_fleet.infrastructure.config import DeepConfig
from agent_fleet.services.context import RunContext
from agent_fleet.services.executor import FleetExecutor

logger = logging.getLogger(__name__)


class DeepInvestigator:
    """Drive one deep investigation per call to :meth:`investigate`.

    Parameters
    ----------
    executor:
        Executor used to invoke the planner, workers, scorer, summarizer and
        synthesizer.
    members:
        Every member the loop may address.
    fleet_name:
        Name used in logs.
    """

    def __init__(
        self,
        executor: FleetExecutor,
        members: Sequence[FleetMember],
        fleet_name: str = "",
    ) -> None:
        self._executor = executor
        self._members = {m.member_id: m for m in members}
        self._fleet_name = fleet_name
        self.last_results: list[AgentResult] = []

    @classmethod
    def for_spec(cls, executor: FleetExecutor, spec: FleetSpec) -> DeepInvestigator:
        return cls(executor, spec.members, spec.name)

    def _check(self, cfg: DeepConfig) -> None:
        issues: list[str] = []
        try:
            cfg.validate()
        except ValueError as exc:
            issues.append(str(exc))
        issues.extend(
            f"deep configuration names unknown member '{member_id}'"
            for member_id in cfg.member_ids()
            if member_id not in self._members
        )
        if issues:
            raise InvalidSpecError(
                f"Invalid deep configuration: {'; '.join(issues)}",
                spec_name=self._fleet_name,
                issues=issues,
            )

    async def investigate(
        self,
        cfg: DeepConfig,
        task: Any,
        *,
        context: RunContext | None = None,
    ) -> tuple[FinalReport, InvestigationState]:
        """Run the loop for *task* and synthesize a report.

        The loop performs at most ``cfg.max_iterations`` iterations and always
        ends with exactly one synthesis, including when it is cancelled or
        hits the run deadline.

        Raises
        ------
        InvalidSpecError
            If *cfg* is incomplete or names members this fleet does not have.
        """
        self._check(cfg)
        context = context if context is not None else RunContext()
        runtime = InvestigationRuntime(
            executor=self._executor,
            config=cfg,
            members=self._members,
            context=context,
            fleet_name=self._fleet_name,
        )
        graph = build_investigation_graph(runtime)
        initial: dict[str, Any] = {
            "task": task,
            "iteration": 0,
            "max_iterations": cfg.max_iterations,
            "phase": InvestigationPhase.PLANNING.value,
            "stop_reason": None,
            "findings": [],
            "confidence": None,
            "iterations": [],
            "results": [],
            "report": None,
        }
        logger.info(
            "Fleet %s: deep investigation (max_iterations=%d, threshold=%.2f)",
            self._fleet_name,
            cfg.max_iterations,
            cfg.confidence_threshold,
        )
        final = await graph.ainvoke(
            initial, config={"recursion_limit": recursion_limit(cfg.max_iterations)}
        )

        state = InvestigationState(task=task)
        for iteration in final.get("iterations", []):
            state.record(iteration)
        state.findings = list(final.get("findings", []))
        state.confidence = final.get("confidence")
        state.stop(final.get("stop_reason") or InvestigationStopReason.MAX_ITERATIONS)
        self.last_results = list(final.get("results", []))

        report = final.get("report")
        if report is None:
            report = FinalReport(
                output=state.findings,
                status=ReportStatus.SYNTHESIS_FAILED,
                confidence=state.confidence or 0.0,
                source=cfg.synthesizer,
                iterations_used=state.iterations_used,
            )
        logger.info(
            "Fleet %s: investigation finished after %d iteration(s): %s (%s)",
            self._fleet_name,
            state.iterations_used,
            report.status.value,
            state.stop_reason.value if state.stop_reason else "-",
        )
        return report, state
