"""LangGraph node functions for the deep investigation loop.

Each factory closes over an ``InvestigationRuntime`` (executor, configuration,
members, run context) and returns an async node that takes the
``InvestigationGraphState`` and returns a partial update dict.  The nodes
delegate member invocations to the fleet executor; the controller-owned
findings are only merged here, after a round has finished.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass
from typing import Any

from agent_fleet.domain.enums import (
    ConfidenceSource,
    ContextStrategy,
    InvestigationPhase,
    InvestigationStopReason,
    ReportStatus,
    ResultStatus,
)
from agent_fleet.domain.events import IterationCompleted
from agent_fleet.domain.exceptions import PlanParseError
from agent_fleet.domain.values import (
    AgentResult,
    FinalReport,
    FleetMember,
    InvestigationStep,
    Iteration,
)
from agent_fleet.infrastructure.config import DeepConfig
from agent_fleet.services.context import RunContext
from agent_fleet.services.dispatch import DispatchJob, dispatch_round
from agent_fleet.services.executor import FleetExecutor
from agent_fleet.services.plans import parse_investigation_plan, to_steps

logger = logging.getLogger(__name__)

Node = Callable[[dict[str, Any]], Coroutine[Any, Any, dict[str, Any]]]


@dataclass
class InvestigationRuntime:
    """Collaborators shared by every node of one investigation."""

    executor: FleetExecutor
    config: DeepConfig
    members: Mapping[str, FleetMember]
    context: RunContext
    fleet_name: str = ""

    def member(self, member_id: str) -> FleetMember | None:
        return self.members.get(member_id)

    def stop_reason(self) -> InvestigationStopReason | None:
        """Cancellation or deadline, checked at every state boundary."""
        if self.context.cancelled:
            return InvestigationStopReason.CANCELLED
        if self.context.expired:
            return InvestigationStopReason.DEADLINE
        return None

    async def invoke(
        self,
        member_id: str,
        payload: Any,
        label: str,
        *,
        detached: bool = False,
    ) -> AgentResult:
        member = self.members[member_id]
        return await self.executor.invoke_one(
            member,
            payload,
            self.context,
            None if detached else self.context.round_deadline(self.config.step_timeout),
            label=label,
            task_id=label,
            detached=detached,
        )


def _score_from(result: AgentResult) -> float | None:
    """Confidence reported by a scorer result, if it carries one."""
    if result.confidence is not None:
        return result.confidence
    output = result.output
    if isinstance(output, Mapping):
        output = output.get("confidence", output.get("score"))
    if isinstance(output, (int, float)) and not isinstance(output, bool):
        if 0.0 <= float(output) <= 1.0:
            return float(output)
    return None


def _finding(result: AgentResult, iteration: int) -> dict[str, Any]:
    entry = result.to_dict()
    entry["iteration"] = iteration
    return entry


# -- plan --------------------------------------------------------------------


def make_plan_node(runtime: InvestigationRuntime) -> Node:
    """Create the planning node.

    Reads ``task``, ``findings``, ``iteration``.
    Writes ``plan``, ``plan_confidence``, ``phase``, appends to ``results``;
    writes ``stop_reason`` on cancellation or planner failure.
    """

    async def plan_node(state: dict[str, Any]) -> dict[str, Any]:
        iteration = state.get("iteration", 0)
        stop = runtime.stop_reason()
        if stop is not None:
            logger.info(
                "Fleet %s: investigation stopped before iteration %d: %s",
                runtime.fleet_name,
                iteration,
                stop.value,
            )
            return {"stop_reason": stop, "phase": InvestigationPhase.SYNTHESIZING.value}

        planner_id = runtime.config.planner
        result = await runtime.invoke(
            planner_id,
            {
                "task": state.get("task"),
                "findings": copy.deepcopy(state.get("findings", [])),
                "iteration": iteration,
            },
            f"plan-{iteration}",
        )
        update: dict[str, Any] = {"results": [result]}
        if not result.completed:
            logger.warning(
                "Planner %s failed at iteration %d: %s", planner_id, iteration, result.error
            )
            update["stop_reason"] = InvestigationStopReason.PLANNING_FAILED
            return update

        try:
            plan = parse_investigation_plan(result.output, planner_id)
        except PlanParseError as exc:
            logger.warning("Iteration %d: %s", iteration, exc)
            update["stop_reason"] = InvestigationStopReason.PLANNING_FAILED
            return update

        confidence = result.confidence if result.confidence is not None else plan.confidence
        logger.debug("plan_node: iteration %d planned %d steps", iteration, len(plan.steps))
        update.update(
            plan=list(to_steps(plan)),
            plan_confidence=confidence,
            phase=InvestigationPhase.EXECUTING.value,
        )
        return update

    return plan_node


# -- execute -----------------------------------------------------------------


def make_execute_node(runtime: InvestigationRuntime) -> Node:
    """Create the execution node.

    Dispatches every step of ``plan`` concurrently, bounded by the configured
    concurrency.  Steps naming an unknown worker yield a ``failed`` result.
    Writes ``round_results`` and appends to ``results``.
    """

    async def execute_node(state: dict[str, Any]) -> dict[str, Any]:
        cfg = runtime.config
        iteration = state.get("iteration", 0)
        steps: list[InvestigationStep] = state.get("plan", [])
        jobs: list[DispatchJob] = []
        unknown: list[AgentResult] = []
        for step in steps:
            member = runtime.member(step.worker)
            if member is None:
                logger.warning(
                    "Iteration %d: step %s names unknown worker '%s'",
                    iteration,
                    step.step_id,
                    step.worker,
                )
                unknown.append(
                    AgentResult(
                        member_id=step.worker,
                        status=ResultStatus.FAILED,
                        error=f"unknown worker '{step.worker}'",
                        task_id=step.step_id,
                    )
                )
                continue
            jobs.append(DispatchJob(member, copy.deepcopy(step.input), task_id=step.step_id))

        dispatched = await dispatch_round(
            jobs,
            runtime.executor.invoker,
            concurrency=cfg.concurrency,
            timeout=cfg.iteration_timeout,
            member_timeout=cfg.step_timeout,
            context=runtime.context,
            label=f"execute-{iteration}",
        )
        round_results = [*dispatched, *unknown]
        logger.info(
            "Iteration %d executed %d steps (%d completed)",
            iteration,
            len(round_results),
            sum(1 for r in round_results if r.completed),
        )
        return {
            "round_results": round_results,
            "results": round_results,
            "phase": InvestigationPhase.EVALUATING.value,
        }

    return execute_node


# -- evaluate ----------------------------------------------------------------


async def _merge_findings(
    runtime: InvestigationRuntime,
    previous: list[Any],
    new: list[Any],
    iteration: int,
) -> tuple[list[Any], list[AgentResult]]:
    cfg = runtime.config
    strategy = cfg.context_strategy
    if strategy is ContextStrategy.WINDOWED:
        return (previous + new)[-cfg.window_size:], []
    if strategy is ContextStrategy.SUMMARIZED and cfg.summarizer:
        result = await runtime.invoke(
            cfg.summarizer,
            {"previous": copy.deepcopy(previous), "new": copy.deepcopy(new)},
            f"summarize-{iteration}",
        )
        if result.completed:
            return [result.output], [result]
        logger.warning("Summarizer failed at iteration %d; keeping raw findings", iteration)
        return previous + new, [result]
    return previous + new, []


def make_evaluate_node(runtime: InvestigationRuntime) -> Node:
    """Create the evaluation node.

    Merges the round's findings per the context strategy, obtains the
    iteration confidence from the declared source, records the
    ``Iteration`` and decides whether the loop ends.
    """

    async def evaluate_node(state: dict[str, Any]) -> dict[str, Any]:
        cfg = runtime.config
        iteration = state.get("iteration", 0)
        round_results: list[AgentResult] = state.get("round_results", [])
        new = [_finding(r, iteration) for r in round_results if r.completed]
        findings, extra_results = await _merge_findings(
            runtime, list(state.get("findings", [])), new, iteration
        )

        stop = runtime.stop_reason()
        confidence: float | None = None
        if stop is None:
            if cfg.confidence_source is ConfidenceSource.PLANNER:
                confidence = state.get("plan_confidence")
            elif cfg.scorer:
                scored = await runtime.invoke(
                    cfg.scorer,
                    {
                        "task": state.get("task"),
                        "findings": copy.deepcopy(findings),
                        "iteration": iteration,
                    },
                    f"score-{iteration}",
                )
                extra_results.append(scored)
                confidence = _score_from(scored) if scored.completed else None
            if confidence is None:
                stop = InvestigationStopReason.MISSING_CONFIDENCE
                logger.warning(
                    "Iteration %d: no confidence from %s; stopping",
                    iteration,
                    cfg.confidence_source.value if cfg.confidence_source else "-",
                )
            elif confidence >= cfg.confidence_threshold:
                stop = InvestigationStopReason.CONVERGED
            elif iteration >= state.get("max_iterations", cfg.max_iterations) - 1:
                stop = InvestigationStopReason.MAX_ITERATIONS

        record = Iteration(
            index=iteration,
            plan=tuple(state.get("plan", [])),
            results=tuple(round_results),
            findings=tuple(findings),
            confidence=confidence,
        )
        runtime.context.audit.record_iteration(record)
        await runtime.context.emit(
            IterationCompleted(
                source_id=runtime.context.run_id,
                iteration=iteration,
                steps=len(record.plan),
                confidence=confidence,
                findings_count=len(findings),
            )
        )
        logger.info(
            "Iteration %d evaluated: confidence=%s findings=%d",
            iteration,
            "-" if confidence is None else f"{confidence:.3f}",
            len(findings),
        )

        update: dict[str, Any] = {
            "findings": findings,
            "confidence": confidence if confidence is not None else state.get("confidence"),
            "iterations": [record],
            "results": extra_results,
        }
        if stop is not None:
            update["stop_reason"] = stop
            update["phase"] = InvestigationPhase.SYNTHESIZING.value
        else:
            update["iteration"] = iteration + 1
            update["phase"] = InvestigationPhase.PLANNING.value
        return update

    return evaluate_node


# -- synthesize --------------------------------------------------------------

_STATUS_BY_STOP = {
    InvestigationStopReason.CONVERGED: ReportStatus.CONVERGED,
    InvestigationStopReason.MAX_ITERATIONS: ReportStatus.LOW_CONFIDENCE,
}


def make_synthesize_node(runtime: InvestigationRuntime) -> Node:
    """Create the synthesis node.

    Invokes the synthesizer once over the findings and writes ``report``.
    An interrupted loop still synthesizes, ignoring the run deadline and
    cancellation; a failed synthesis returns the raw findings.
    """

    async def synthesize_node(state: dict[str, Any]) -> dict[str, Any]:
        cfg = runtime.config
        stop = state.get("stop_reason") or InvestigationStopReason.MAX_ITERATIONS
        findings = list(state.get("findings", []))
        iterations_used = len(state.get("iterations", []))
        confidence = state.get("confidence")
        status = _STATUS_BY_STOP.get(stop, ReportStatus.INTERRUPTED)
        notes = () if stop in _STATUS_BY_STOP else (f"stopped: {stop.value}",)

        result = await runtime.invoke(
            cfg.synthesizer,
            {
                "task": state.get("task"),
                "findings": copy.deepcopy(findings),
                "iterations": iterations_used,
                "confidence": confidence,
            },
            "synthesize",
            detached=stop not in _STATUS_BY_STOP,
        )
        if result.completed:
            report = FinalReport(
                output=result.output,
                status=status,
                confidence=confidence or 0.0,
                source=cfg.synthesizer,
                iterations_used=iterations_used,
                notes=notes,
            )
        else:
            logger.warning("Synthesizer %s failed: %s", cfg.synthesizer, result.error)
            report = FinalReport(
                output=findings,
                status=ReportStatus.SYNTHESIS_FAILED,
                confidence=confidence or 0.0,
                source=cfg.synthesizer,
                iterations_used=iterations_used,
                notes=(*notes, f"synthesis failed: {result.error}"),
            )
        return {
            "report": report,
            "results": [result],
            "stop_reason": stop,
            "phase": InvestigationPhase.DONE.value,
        }

    return synthesize_node
