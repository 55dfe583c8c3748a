"""Fleet executor and the coordination-mode handlers.

The executor runs one coordination round for a fleet: it looks up the handler
registered for the fleet's ``CoordinationMode``, lets it collect results, and
reduces them with the consensus engine.  Raw results are always returned
next to the decision.

Classes
-------
FleetExecutor
    Entry point; owns the invoker, executor configuration and consensus
    engine.
BaseCoordinator
    Abstract handler for one coordination mode.
PeerCoordinator, HierarchicalCoordinator, PipelineCoordinator,
SwarmCoordinator
    Built-in handlers, registered under the ``"coordination"`` category.
"""

from __future__ import annotations

import copy
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any, NamedTuple

from agent_fleet.domain.entities import FleetSpec
from agent_fleet.domain.enums import CoordinationMode, NoDecisionReason, TaskDistribution
from agent_fleet.domain.events import ConsensusFailed, ConsensusReached
from agent_fleet.domain.exceptions import InsufficientVotesError, PlanParseError
from agent_fleet.domain.values import AgentResult, ConsensusDecision, FleetMember
from agent_fleet.infrastructure.config import ConsensusConfig, ExecutorConfig
from agent_fleet.infrastructure.registry import COORDINATION, ComponentRegistry, registry
from agent_fleet.services.approval import BaseApprover, HumanReviewGate
from agent_fleet.services.consensus import ConsensusEngine
from agent_fleet.services.context import RunContext
from agent_fleet.services.dispatch import DispatchJob, dispatch_round
from agent_fleet.services.invoker import BaseAgentInvoker, seconds_until
from agent_fleet.services.plans import parse_delegation_plan

logger = logging.getLogger(__name__)


class ExecutionResult(NamedTuple):
    """Decision plus every raw result of a coordination round."""

    decision: ConsensusDecision
    results: tuple[AgentResult, ...]


@dataclass(frozen=True)
class RoundCollection:
    """What a coordinator hands to the consensus engine.

    ``ballot`` is the result set consensus runs on; ``results`` is every
    result the coordination produced, kept for audit.
    """

    ballot: tuple[AgentResult, ...]
    results: tuple[AgentResult, ...]
    consensus: ConsensusConfig


# ===================================================================== #
#  Executor                                                              #
# ===================================================================== #

class FleetExecutor:
    """Dispatch a fleet by coordination mode and reduce the outcome.

    Parameters
    ----------
    invoker:
        Collaborator that runs individual members.
    config:
        Concurrency, per-member timeout and swarm distribution settings.
    engine:
        Consensus engine; a default one is created when omitted.
    approver:
        Optional approval collaborator for ``human_review`` rounds.  Without
        one, such rounds stay pending.
    components:
        Registry holding the coordination handlers.
    """

    def __init__(
        self,
        invoker: BaseAgentInvoker,
        config: ExecutorConfig | None = None,
        engine: ConsensusEngine | None = None,
        approver: BaseApprover | None = None,
        components: ComponentRegistry | None = None,
    ) -> None:
        self.invoker = invoker
        self.config = config or ExecutorConfig()
        self.config.validate()
        self.engine = engine or ConsensusEngine(components)
        self._gate = HumanReviewGate(approver) if approver is not None else None
        self._registry = components or registry

    async def run(
        self,
        spec: FleetSpec,
        task_input: Any,
        *,
        subtasks: Sequence[Any] | None = None,
        context: RunContext | None = None,
    ) -> ExecutionResult:
        """Run one coordination round for *spec*.

        Raises
        ------
        InvalidSpecError
            If *spec* fails validation.
        InsufficientVotesError
            If quorum cannot be reached and partial results are not allowed.
        ValueError
            If the mode is handled by another controller (tiered, deep).
        """
        spec.validate()
        if spec.mode in (CoordinationMode.TIERED, CoordinationMode.DEEP):
            raise ValueError(
                f"mode '{spec.mode.value}' is not an executor mode; use FleetRunner"
            )
        context = context if context is not None else RunContext()
        coordinator: BaseCoordinator = self._registry.create(COORDINATION, spec.mode, self)
        logger.info(
            "Fleet %s: %s round over %d members", spec.name, spec.mode.value, len(spec.members)
        )
        collection = await coordinator.collect(spec, task_input, context, subtasks)
        decision = await self.decide(
            collection.ballot,
            collection.consensus,
            spec.members,
            context,
            fleet_name=spec.name,
            label=spec.mode.value,
        )
        return ExecutionResult(decision, collection.results)

    # -- building blocks used by coordinators and the tiered controller ------

    async def dispatch_peer(
        self,
        members: Sequence[FleetMember],
        task_input: Any,
        cfg: ConsensusConfig,
        context: RunContext,
        *,
        label: str = "",
        early_stop: bool = True,
    ) -> list[AgentResult]:
        """Send the same input snapshot to every member concurrently."""
        jobs = [DispatchJob(member, copy.deepcopy(task_input)) for member in members]
        algorithm = self.engine.algorithm_for(cfg.algorithm)
        stop_when = None
        if early_stop:
            def stop_when(results: Sequence[AgentResult]) -> bool:
                return algorithm.should_stop_early(results, cfg, len(jobs))
        return await dispatch_round(
            jobs,
            self.invoker,
            concurrency=self.config.concurrency,
            timeout=cfg.timeout,
            member_timeout=self.config.member_timeout,
            context=context,
            quorum=cfg.quorum(len(jobs)),
            fail_fast=not cfg.allow_partial,
            stop_when=stop_when,
            label=label,
        )

    async def invoke_one(
        self,
        member: FleetMember,
        task_input: Any,
        context: RunContext,
        deadline: float | None,
        *,
        label: str = "",
        task_id: str = "",
        detached: bool = False,
    ) -> AgentResult:
        """Invoke a single member before an absolute deadline."""
        results = await dispatch_round(
            [DispatchJob(member, copy.deepcopy(task_input), task_id=task_id)],
            self.invoker,
            concurrency=1,
            timeout=seconds_until(deadline),
            member_timeout=self.config.member_timeout,
            context=context,
            label=label,
            detached=detached,
        )
        return results[0]

    async def decide(
        self,
        results: Sequence[AgentResult],
        cfg: ConsensusConfig,
        members: Sequence[FleetMember],
        context: RunContext,
        *,
        fleet_name: str = "",
        label: str = "",
    ) -> ConsensusDecision:
        """Resolve *results*, route pending reviews, record and publish."""
        decision = self.engine.resolve(results, cfg, members)
        if (
            decision.reason is NoDecisionReason.PENDING_HUMAN_REVIEW
            and self._gate is not None
        ):
            decision = await self._gate.review(decision, cfg, members, fleet_name)
        context.audit.record_decision(decision, label=label)
        if decision.decided:
            await context.emit(
                ConsensusReached(
                    source_id=context.run_id,
                    algorithm=decision.algorithm,
                    votes=decision.votes,
                    confidence=decision.confidence,
                    dissenting=decision.dissenting,
                )
            )
        else:
            logger.info(
                "Fleet %s: no decision (%s): %s",
                fleet_name,
                decision.reason.value if decision.reason else "-",
                decision.explanation,
            )
            await context.emit(
                ConsensusFailed(
                    source_id=context.run_id,
                    algorithm=decision.algorithm,
                    reason=decision.reason or NoDecisionReason.INSUFFICIENT_VOTES,
                    explanation=decision.explanation,
                    votes=decision.votes,
                )
            )
        return decision


# ===================================================================== #
#  Coordination modes                                                    #
# ===================================================================== #

class BaseCoordinator(ABC):
    """Handler for one coordination mode."""

    mode: CoordinationMode

    def __init__(self, executor: FleetExecutor) -> None:
        self.executor = executor

    @abstractmethod
    async def collect(
        self,
        spec: FleetSpec,
        task_input: Any,
        context: RunContext,
        subtasks: Sequence[Any] | None,
    ) -> RoundCollection:
        """Dispatch the fleet and return the results to resolve."""


@registry.register(COORDINATION, CoordinationMode.PEER)
class PeerCoordinator(BaseCoordinator):
    """Every member receives the same input concurrently."""

    mode = CoordinationMode.PEER

    async def collect(
        self,
        spec: FleetSpec,
        task_input: Any,
        context: RunContext,
        subtasks: Sequence[Any] | None,
    ) -> RoundCollection:
        results = tuple(
            await self.executor.dispatch_peer(
                spec.members, task_input, spec.consensus, context, label="peer"
            )
        )
        return RoundCollection(results, results, spec.consensus)


def _single_output(
    spec: FleetSpec,
    final: AgentResult,
    results: Sequence[AgentResult],
    stage: str,
) -> RoundCollection:
    """Collection resolved on one final result.

    Without that result the round has no quorum: it fails unless the fleet
    allows partial results, in which case consensus reports the shortfall.
    """
    if not final.completed and not spec.consensus.allow_partial:
        raise InsufficientVotesError(
            f"Fleet '{spec.name}': {stage} {final.member_id} did not complete "
            f"({final.status.value}); no result to decide on",
            min_votes=1,
            completed=0,
            results=results,
            details={"stage": stage, "member": final.member_id},
        )
    return RoundCollection((final,), tuple(results), spec.consensus.with_min_votes(1))


def _describe(member: FleetMember) -> dict[str, Any]:
    return {
        "id": member.member_id,
        "role": member.role.value,
        "capabilities": list(member.capabilities),
    }


@registry.register(COORDINATION, CoordinationMode.HIERARCHICAL)
class HierarchicalCoordinator(BaseCoordinator):
    """A manager delegates to specialists and synthesizes their results.

    The manager is invoked twice: once with the task and the specialist
    roster to obtain a delegation list, once with the specialists' results
    to produce the final output.  The final output is resolved on its own.
    """

    mode = CoordinationMode.HIERARCHICAL

    async def collect(
        self,
        spec: FleetSpec,
        task_input: Any,
        context: RunContext,
        subtasks: Sequence[Any] | None,
    ) -> RoundCollection:
        manager = spec.get_manager()
        if manager is None:  # guarded by FleetSpec.validate
            raise ValueError(f"fleet '{spec.name}' has no manager")
        specialists = {m.member_id: m for m in spec.specialists()}
        deadline = context.round_deadline(spec.consensus.timeout)

        plan_result = await self.executor.invoke_one(
            manager,
            {"task": task_input, "specialists": [_describe(m) for m in specialists.values()]},
            context,
            deadline,
            label="manager-plan",
            task_id="plan",
        )
        if not plan_result.completed:
            logger.warning("Fleet %s: manager %s failed to plan", spec.name, manager.member_id)
            return _single_output(spec, plan_result, (plan_result,), "manager")

        delegations = self._delegations(plan_result, specialists, task_input)
        jobs = [
            DispatchJob(specialists[sid], copy.deepcopy(sub_input), task_id=f"delegation-{i}")
            for i, (sid, sub_input) in enumerate(delegations)
        ]
        specialist_results = await dispatch_round(
            jobs,
            self.executor.invoker,
            concurrency=self.executor.config.concurrency,
            timeout=seconds_until(deadline),
            member_timeout=self.executor.config.member_timeout,
            context=context,
            label="specialists",
        )

        final = await self.executor.invoke_one(
            manager,
            {
                "task": task_input,
                "delegations": [
                    {"specialist": sid, "input": sub_input} for sid, sub_input in delegations
                ],
                "results": [r.to_dict() for r in specialist_results],
            },
            context,
            deadline,
            label="manager-synthesis",
            task_id="synthesis",
        )
        return _single_output(
            spec, final, (plan_result, *specialist_results, final), "manager"
        )

    @staticmethod
    def _delegations(
        plan_result: AgentResult,
        specialists: dict[str, FleetMember],
        task_input: Any,
    ) -> list[tuple[str, Any]]:
        try:
            plan = parse_delegation_plan(plan_result.output, plan_result.member_id)
        except PlanParseError as exc:
            logger.warning("%s; delegating the task to every specialist", exc)
            return [(sid, task_input) for sid in specialists]

        chosen: list[tuple[str, Any]] = []
        for item in plan.delegations:
            if item.specialist not in specialists:
                logger.warning(
                    "Manager %s delegated to unknown specialist '%s'; dropped",
                    plan_result.member_id,
                    item.specialist,
                )
                continue
            chosen.append((item.specialist, task_input if item.input is None else item.input))
        if not plan.delegations:
            return [(sid, task_input) for sid in specialists]
        return chosen


@registry.register(COORDINATION, CoordinationMode.PIPELINE)
class PipelineCoordinator(BaseCoordinator):
    """Members run one after another, each on the previous member's output."""

    mode = CoordinationMode.PIPELINE

    async def collect(
        self,
        spec: FleetSpec,
        task_input: Any,
        context: RunContext,
        subtasks: Sequence[Any] | None,
    ) -> RoundCollection:
        deadline = context.round_deadline(spec.consensus.timeout)
        current = task_input
        stages: list[AgentResult] = []
        for index, member in enumerate(spec.members):
            result = await self.executor.invoke_one(
                member,
                current,
                context,
                deadline,
                label=f"stage-{index}",
                task_id=f"stage-{index}",
            )
            stages.append(result)
            if not result.completed:
                logger.warning(
                    "Fleet %s: pipeline stopped at stage %d (%s: %s)",
                    spec.name,
                    index,
                    member.member_id,
                    result.status.value,
                )
                break
            current = result.output
        return _single_output(spec, stages[-1], stages, f"stage {len(stages) - 1}")


# -- swarm -------------------------------------------------------------------

@dataclass
class WorkerSlot:
    """One concurrent worker position: a member replica."""

    member: FleetMember
    replica: int = 0
    busy: bool = False
    handled: int = 0

    @property
    def slot_id(self) -> str:
        return f"{self.member.member_id}#{self.replica}"


class SlotPool:
    """Hands free worker slots to starting jobs per ``TaskDistribution``."""

    def __init__(
        self,
        members: Sequence[FleetMember],
        distribution: TaskDistribution = TaskDistribution.ROUND_ROBIN,
        seed: int | None = None,
    ) -> None:
        self.slots = [
            WorkerSlot(member, replica) for member in members for replica in range(member.replicas)
        ]
        self._distribution = distribution
        self._rng = random.Random(seed)
        self._cursor = 0
        self._by_task: dict[str, WorkerSlot] = {}

    def __len__(self) -> int:
        return len(self.slots)

    def _pick(self) -> WorkerSlot:
        free = [s for s in self.slots if not s.busy]
        if not free:
            raise RuntimeError("no free worker slot; concurrency exceeds slot count")
        if self._distribution is TaskDistribution.LEAST_LOADED:
            return min(free, key=lambda s: s.handled)
        if self._distribution is TaskDistribution.RANDOM:
            return self._rng.choice(free)
        for offset in range(len(self.slots)):
            slot = self.slots[(self._cursor + offset) % len(self.slots)]
            if not slot.busy:
                self._cursor = (self._cursor + offset + 1) % len(self.slots)
                return slot
        raise RuntimeError("no free worker slot")

    def assign(self, job: DispatchJob) -> DispatchJob:
        slot = self._pick()
        slot.busy = True
        self._by_task[job.task_id] = slot
        logger.debug("Sub-task %s -> slot %s", job.task_id, slot.slot_id)
        return replace(job, member=slot.member)

    def release(self, job: DispatchJob) -> None:
        slot = self._by_task.pop(job.task_id, None)
        if slot is not None:
            slot.busy = False
            slot.handled += 1


@registry.register(COORDINATION, CoordinationMode.SWARM)
class SwarmCoordinator(BaseCoordinator):
    """A queue of sub-tasks drained by a bounded pool of worker slots.

    Each member contributes ``replicas`` slots; at most
    ``ExecutorConfig.concurrency`` slots work at once.  A slot that finishes
    takes the next queued sub-task.
    """

    mode = CoordinationMode.SWARM

    async def collect(
        self,
        spec: FleetSpec,
        task_input: Any,
        context: RunContext,
        subtasks: Sequence[Any] | None,
    ) -> RoundCollection:
        queue = list(subtasks) if subtasks else [task_input]
        config = self.executor.config
        pool = SlotPool(spec.members, config.distribution, config.seed)
        cfg = spec.consensus
        jobs = [
            DispatchJob(None, copy.deepcopy(item), task_id=f"subtask-{i}")
            for i, item in enumerate(queue)
        ]
        logger.info(
            "Fleet %s: swarm of %d slots draining %d sub-tasks",
            spec.name,
            len(pool),
            len(jobs),
        )
        results = tuple(
            await dispatch_round(
                jobs,
                self.executor.invoker,
                concurrency=min(config.concurrency, len(pool)),
                timeout=cfg.timeout,
                member_timeout=config.member_timeout,
                context=context,
                quorum=cfg.quorum(len(jobs)),
                fail_fast=not cfg.allow_partial,
                assigner=pool,
                label="swarm",
            )
        )
        return RoundCollection(results, results, cfg)
