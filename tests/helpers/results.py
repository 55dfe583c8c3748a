"""Builders for ``AgentResult`` fixtures."""

from __future__ import annotations

from agent_fleet.domain.enums import ResultStatus
from agent_fleet.domain.values import AgentResult


def make_result(
    member_id: str,
    output: object = None,
    *,
    status: ResultStatus = ResultStatus.COMPLETED,
    confidence: float | None = None,
    sequence: int = 0,
    finished_at: float | None = None,
    task_id: str = "",
) -> AgentResult:
    """Build an ``AgentResult`` with sensible timestamps."""
    finished = finished_at if finished_at is not None else 1000.0 + sequence
    return AgentResult(
        member_id=member_id,
        status=status,
        output=output if status is ResultStatus.COMPLETED else None,
        confidence=confidence,
        error="" if status is ResultStatus.COMPLETED else status.value,
        started_at=finished - 0.5,
        finished_at=finished,
        sequence=sequence,
        task_id=task_id,
    )


def results_for(*pairs: tuple[str, object]) -> list[AgentResult]:
    """Completed results, one per ``(member_id, output)`` pair, in arrival order."""
    return [make_result(mid, out, sequence=i) for i, (mid, out) in enumerate(pairs)]
