"""Bounded fan-out / fan-in of member invocations.

One call to :func:`dispatch_round` is one dispatch round: every job gets its
own task, an ``asyncio.Semaphore`` bounds how many run at once, and the
controller loop waits with ``FIRST_COMPLETED`` against the round deadline and
the run's cancellation event.  Whatever stops the round (early stop, quorum
fail-fast, deadline, cancellation) the outstanding members are cancelled and
recorded, never dropped.

Results are returned in arrival order; ``sequence`` is assigned by the
controller as results are observed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from agent_fleet.domain.enums import ResultStatus
from agent_fleet.domain.events import MemberCompleted, MemberDispatched, MemberFailed
from agent_fleet.domain.exceptions import InsufficientVotesError, MemberError, MemberTimeoutError
from agent_fleet.domain.values import AgentResult, FleetMember
from agent_fleet.services.context import RunContext
from agent_fleet.services.invoker import BaseAgentInvoker, as_agent_output, seconds_until

logger = logging.getLogger(__name__)

StopPredicate = Callable[[Sequence[AgentResult]], bool]


class SlotAssigner(Protocol):
    """Picks the member that runs a job once the job is allowed to start."""

    def assign(self, job: DispatchJob) -> DispatchJob: ...

    def release(self, job: DispatchJob) -> None: ...


@dataclass(frozen=True)
class DispatchJob:
    """One invocation to schedule in a round.

    ``member`` may be left ``None`` when a ``SlotAssigner`` chooses it at
    start time (swarm mode).
    """

    member: FleetMember | None
    task_input: Any
    task_id: str = ""

    @property
    def member_id(self) -> str:
        return self.member.member_id if self.member is not None else ""


def _earliest(*deadlines: float | None) -> float | None:
    present = [d for d in deadlines if d is not None]
    return min(present) if present else None


async def invoke_member(
    invoker: BaseAgentInvoker,
    job: DispatchJob,
    deadline: float | None,
    context: RunContext | None = None,
) -> AgentResult:
    """Invoke one member and convert whatever happens into an ``AgentResult``.

    Member failures never propagate: a raising invoker yields ``failed`` and
    an exceeded deadline yields ``timed_out``.  Only task cancellation
    escapes, and the caller records it.
    """
    member = job.member
    if member is None:
        raise ValueError(f"job {job.task_id or '-'} has no member assigned")
    started = time.time()
    if context is not None:
        await context.emit(
            MemberDispatched(
                source_id=context.run_id, member_id=member.member_id, task_id=job.task_id
            )
        )
    logger.debug("Dispatching member %s (task=%s)", member.member_id, job.task_id or "-")
    try:
        raw = await asyncio.wait_for(
            invoker.invoke(member, job.task_input, deadline),
            timeout=seconds_until(deadline),
        )
        agent_output = as_agent_output(raw)
    except (asyncio.TimeoutError, MemberTimeoutError) as exc:
        logger.warning("Member %s timed out", member.member_id)
        return AgentResult(
            member_id=member.member_id,
            status=ResultStatus.TIMED_OUT,
            error=str(exc) or "deadline exceeded",
            started_at=started,
            finished_at=time.time(),
            task_id=job.task_id,
        )
    except MemberError as exc:
        logger.warning("Member %s failed: %s", member.member_id, exc)
        return AgentResult(
            member_id=member.member_id,
            status=ResultStatus.FAILED,
            error=str(exc),
            started_at=started,
            finished_at=time.time(),
            task_id=job.task_id,
        )
    except Exception as exc:
        logger.warning("Member %s raised %s: %s", member.member_id, type(exc).__name__, exc)
        return AgentResult(
            member_id=member.member_id,
            status=ResultStatus.FAILED,
            error=f"{type(exc).__name__}: {exc}",
            started_at=started,
            finished_at=time.time(),
            task_id=job.task_id,
        )
    return AgentResult(
        member_id=member.member_id,
        status=ResultStatus.COMPLETED,
        output=agent_output.output,
        confidence=agent_output.confidence,
        started_at=started,
        finished_at=time.time(),
        task_id=job.task_id,
    )


async def publish_result(context: RunContext, result: AgentResult) -> None:
    """Emit the completion or failure event for a recorded result."""
    if result.completed:
        await context.emit(
            MemberCompleted(
                source_id=context.run_id,
                member_id=result.member_id,
                task_id=result.task_id,
                duration=result.duration,
                confidence=result.confidence,
            )
        )
    else:
        await context.emit(
            MemberFailed(
                source_id=context.run_id,
                member_id=result.member_id,
                task_id=result.task_id,
                status=result.status,
                error=result.error,
            )
        )


async def dispatch_round(
    jobs: Sequence[DispatchJob],
    invoker: BaseAgentInvoker,
    *,
    concurrency: int = 8,
    timeout: float | None = None,
    member_timeout: float | None = None,
    context: RunContext | None = None,
    quorum: int | None = None,
    fail_fast: bool = False,
    stop_when: StopPredicate | None = None,
    assigner: SlotAssigner | None = None,
    label: str = "",
    detached: bool = False,
) -> list[AgentResult]:
    """Run *jobs* concurrently and collect one result per job.

    Parameters
    ----------
    jobs:
        Invocations to schedule, in declaration order.
    invoker:
        Collaborator that actually runs each member.
    concurrency:
        Maximum invocations in flight.
    timeout:
        Round timeout in seconds, combined with the run deadline.
    member_timeout:
        Optional per-invocation timeout in seconds.
    context:
        Run context providing the run deadline, cancellation and events.
    quorum:
        Completed results required by the caller.
    fail_fast:
        When ``True`` and *quorum* is set, raise ``InsufficientVotesError``
        as soon as the quorum can no longer be reached, and at the end of a
        round that finished below it.
    stop_when:
        Predicate over the results so far; when it returns ``True`` the
        remaining members are cancelled.
    assigner:
        Optional slot pool choosing each job's member when it starts.
    label:
        Name of the round in the audit trail.
    detached:
        Ignore the run deadline and cancellation (still recording events).
        Used for the closing synthesis of an interrupted run.

    Returns
    -------
    list[AgentResult]
        One result per job, in arrival order.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    if fail_fast and quorum is not None and quorum > len(jobs):
        raise InsufficientVotesError(
            f"Quorum of {quorum} cannot be reached with {len(jobs)} members",
            min_votes=quorum,
            completed=0,
        )
    if not jobs:
        return []

    now = time.monotonic()
    round_deadline = _earliest(
        now + timeout if timeout is not None else None,
        context.deadline if context is not None and not detached else None,
    )
    semaphore = asyncio.Semaphore(concurrency)
    started_at: dict[int, float] = {}
    assigned: dict[int, DispatchJob] = {}

    async def _guarded(index: int, job: DispatchJob) -> AgentResult:
        async with semaphore:
            started_at[index] = time.time()
            if assigner is not None:
                job = assigner.assign(job)
            assigned[index] = job
            member_deadline = (
                time.monotonic() + member_timeout if member_timeout is not None else None
            )
            try:
                return await invoke_member(
                    invoker, job, _earliest(member_deadline, round_deadline), context
                )
            finally:
                if assigner is not None:
                    assigner.release(job)

    pending: dict[asyncio.Task[AgentResult], int] = {
        asyncio.ensure_future(_guarded(i, job)): i for i, job in enumerate(jobs)
    }
    cancel_waiter: asyncio.Task[Any] | None = None
    if context is not None and not detached:
        cancel_waiter = asyncio.ensure_future(context.cancel_event.wait())

    results: list[AgentResult] = []
    interrupt: ResultStatus | None = None
    unreachable = False

    async def _record(result: AgentResult) -> None:
        recorded = dataclasses.replace(result, sequence=len(results))
        results.append(recorded)
        if context is not None:
            await publish_result(context, recorded)

    def _interrupted(index: int, status: ResultStatus, error: str) -> AgentResult:
        job = assigned.get(index, jobs[index])
        return AgentResult(
            member_id=job.member_id or f"unassigned:{job.task_id or index}",
            status=status,
            error=error,
            started_at=started_at.get(index, 0.0),
            finished_at=time.time(),
            task_id=job.task_id,
        )

    try:
        while pending:
            waiting: set[asyncio.Future[Any]] = set(pending)
            if cancel_waiter is not None:
                waiting.add(cancel_waiter)
            done, _ = await asyncio.wait(
                waiting,
                timeout=seconds_until(round_deadline),
                return_when=asyncio.FIRST_COMPLETED,
            )
            finished = [t for t in done if t is not cancel_waiter]
            # a task cancelled from inside its invoker has no result to sort on
            cancelled = sorted((t for t in finished if t.cancelled()), key=pending.__getitem__)
            finished = [t for t in finished if not t.cancelled()]
            finished.sort(key=lambda t: (t.result().finished_at, pending[t]))
            for task in finished:
                pending.pop(task)
                await _record(task.result())
            for task in cancelled:
                index = pending.pop(task)
                logger.warning("Member task %d was cancelled by its invoker", index)
                await _record(_interrupted(index, ResultStatus.CANCELLED, "cancelled"))

            if not done:
                interrupt = ResultStatus.TIMED_OUT
                logger.info("Round deadline reached with %d members outstanding", len(pending))
                break
            if cancel_waiter is not None and cancel_waiter in done:
                interrupt = ResultStatus.CANCELLED
                logger.info("Round cancelled with %d members outstanding", len(pending))
                break
            if stop_when is not None and pending and stop_when(results):
                interrupt = ResultStatus.CANCELLED
                logger.debug("Early stop with %d members outstanding", len(pending))
                break
            if fail_fast and quorum is not None:
                completed = sum(1 for r in results if r.completed)
                if completed + len(pending) < quorum:
                    interrupt = ResultStatus.CANCELLED
                    unreachable = True
                    break
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    for task, index in sorted(pending.items(), key=lambda item: item[1]):
        if not task.cancelled() and task.exception() is None:
            await _record(task.result())
            continue
        await _record(
            _interrupted(
                index,
                interrupt or ResultStatus.CANCELLED,
                (
                    "round deadline exceeded"
                    if interrupt is ResultStatus.TIMED_OUT
                    else "cancelled"
                ),
            )
        )

    if context is not None:
        context.audit.record_round(results, label=label)

    if fail_fast and quorum is not None:
        completed = sum(1 for r in results if r.completed)
        if unreachable or completed < quorum:
            raise InsufficientVotesError(
                f"Only {completed} of {len(jobs)} members completed; {quorum} required",
                min_votes=quorum,
                completed=completed,
                results=results,
            )
    return results
