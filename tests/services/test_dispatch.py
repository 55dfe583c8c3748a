"""Tests for bounded fan-out / fan-in dispatch rounds."""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any

import pytest

from agent_fleet.domain.enums import ResultStatus
from agent_fleet.domain.events import MemberCompleted, MemberDispatched, MemberFailed
from agent_fleet.domain.exceptions import InsufficientVotesError
from agent_fleet.domain.values import FleetMember
from agent_fleet.services.context import RunContext
from agent_fleet.services.dispatch import DispatchJob, dispatch_round, invoke_member
from agent_fleet.services.invoker import CallableInvoker
from agent_fleet.testing import ScriptedInvoker, fail, hang, reply


def _jobs(*member_ids: str, task_input: Any = "task") -> list[DispatchJob]:
    return [DispatchJob(FleetMember(mid), task_input) for mid in member_ids]


class TestInvokeMember:

    @pytest.mark.asyncio
    async def test_completed(self) -> None:
        invoker = ScriptedInvoker({"a": reply("A", 0.7)})
        result = await invoke_member(invoker, _jobs("a")[0], None)
        assert result.status is ResultStatus.COMPLETED
        assert result.output == "A"
        assert result.confidence == 0.7
        assert result.finished_at >= result.started_at

    @pytest.mark.asyncio
    async def test_member_error_becomes_failed(self) -> None:
        invoker = ScriptedInvoker({"a": fail("boom")})
        result = await invoke_member(invoker, _jobs("a")[0], None)
        assert result.status is ResultStatus.FAILED
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed(self) -> None:
        invoker = ScriptedInvoker({"a": KeyError("missing")})
        result = await invoke_member(invoker, _jobs("a")[0], None)
        assert result.status is ResultStatus.FAILED
        assert result.error.startswith("KeyError")

    @pytest.mark.asyncio
    async def test_deadline_becomes_timed_out(self) -> None:
        invoker = ScriptedInvoker({"a": hang()})
        result = await invoke_member(invoker, _jobs("a")[0], time.monotonic() + 0.05)
        assert result.status is ResultStatus.TIMED_OUT
        assert result.error

    @pytest.mark.asyncio
    async def test_job_without_member(self) -> None:
        with pytest.raises(ValueError, match="no member"):
            await invoke_member(ScriptedInvoker(default="x"), DispatchJob(None, "t"), None)


class TestDispatchRound:

    @pytest.mark.asyncio
    async def test_all_members_report(self) -> None:
        invoker = ScriptedInvoker(default="A")
        results = await dispatch_round(_jobs("a", "b", "c"), invoker)
        assert sorted(r.member_id for r in results) == ["a", "b", "c"]
        assert [r.sequence for r in results] == [0, 1, 2]
        assert all(r.completed for r in results)

    @pytest.mark.asyncio
    async def test_results_in_arrival_order(self) -> None:
        invoker = ScriptedInvoker(
            {"slow": reply("S", delay=0.06), "mid": reply("M", delay=0.03), "fast": "F"}
        )
        results = await dispatch_round(_jobs("slow", "mid", "fast"), invoker)
        assert [r.member_id for r in results] == ["fast", "mid", "slow"]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self) -> None:
        invoker = ScriptedInvoker({"a": "A", "b": fail(), "c": "A"})
        results = await dispatch_round(_jobs("a", "b", "c"), invoker)
        by_member = {r.member_id: r for r in results}
        assert by_member["b"].status is ResultStatus.FAILED
        assert by_member["a"].completed and by_member["c"].completed

    @pytest.mark.asyncio
    async def test_round_timeout_records_outstanding(self) -> None:
        invoker = ScriptedInvoker({"a": "A", "b": "A", "c": hang()})
        results = await dispatch_round(_jobs("a", "b", "c"), invoker, timeout=0.1)
        assert len(results) == 3
        slow = [r for r in results if r.member_id == "c"][0]
        assert slow.status is ResultStatus.TIMED_OUT
        assert slow.sequence == 2

    @pytest.mark.asyncio
    async def test_member_timeout(self) -> None:
        invoker = ScriptedInvoker({"a": reply("A", delay=0.5), "b": "B"})
        results = await dispatch_round(_jobs("a", "b"), invoker, member_timeout=0.05)
        by_member = {r.member_id: r for r in results}
        assert by_member["a"].status is ResultStatus.TIMED_OUT
        assert by_member["b"].completed

    @pytest.mark.asyncio
    async def test_cancellation_records_outstanding(self, context: RunContext) -> None:
        invoker = ScriptedInvoker({"a": "A", "b": hang(), "c": hang()})

        async def cancel_soon() -> None:
            await asyncio.sleep(0.05)
            context.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        results = await dispatch_round(_jobs("a", "b", "c"), invoker, context=context)
        await canceller
        statuses = {r.member_id: r.status for r in results}
        assert statuses == {
            "a": ResultStatus.COMPLETED,
            "b": ResultStatus.CANCELLED,
            "c": ResultStatus.CANCELLED,
        }

    @pytest.mark.asyncio
    async def test_detached_ignores_cancellation(self, context: RunContext) -> None:
        context.cancel()
        invoker = ScriptedInvoker(default="A")
        results = await dispatch_round(_jobs("a"), invoker, context=context, detached=True)
        assert results[0].completed

    @pytest.mark.asyncio
    async def test_stop_when_cancels_the_rest(self) -> None:
        invoker = ScriptedInvoker({"a": "A", "b": hang(), "c": hang()})
        results = await dispatch_round(
            _jobs("a", "b", "c"),
            invoker,
            stop_when=lambda rs: any(r.completed for r in rs),
        )
        assert [r.status for r in results] == [
            ResultStatus.COMPLETED,
            ResultStatus.CANCELLED,
            ResultStatus.CANCELLED,
        ]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        in_flight = 0
        peak = 0

        async def handler(member: FleetMember, task_input: Any) -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return member.member_id

        invoker = CallableInvoker(default=handler)
        results = await dispatch_round(_jobs(*"abcdef"), invoker, concurrency=2)
        assert len(results) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError):
            await dispatch_round(_jobs("a"), ScriptedInvoker(default="A"), concurrency=0)

    @pytest.mark.asyncio
    async def test_empty_round(self) -> None:
        assert await dispatch_round([], ScriptedInvoker(default="A")) == []

    @pytest.mark.asyncio
    async def test_task_cancelled_by_invoker_is_recorded(self) -> None:
        async def cancelled(member: FleetMember, task_input: Any) -> str:
            raise asyncio.CancelledError()

        async def answer(member: FleetMember, task_input: Any) -> str:
            await asyncio.sleep(0.02)
            return "A"

        invoker = CallableInvoker({"a": answer, "b": cancelled, "c": answer})
        results = await dispatch_round(_jobs("a", "b", "c"), invoker, timeout=1.0)
        statuses = {r.member_id: r.status for r in results}
        assert statuses == {
            "a": ResultStatus.COMPLETED,
            "b": ResultStatus.CANCELLED,
            "c": ResultStatus.COMPLETED,
        }
        assert [r.sequence for r in results] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_unassigned_job_keeps_a_readable_id(self) -> None:
        class _OneSlot:
            def assign(self, job: DispatchJob) -> DispatchJob:
                return replace(job, member=FleetMember("w"))

            def release(self, job: DispatchJob) -> None:
                pass

        jobs = [DispatchJob(None, i, task_id=f"subtask-{i}") for i in range(2)]
        results = await dispatch_round(
            jobs,
            ScriptedInvoker(default=hang()),
            concurrency=1,
            timeout=0.05,
            assigner=_OneSlot(),
        )
        by_task = {r.task_id: r for r in results}
        assert by_task["subtask-0"].member_id == "w"
        assert by_task["subtask-1"].member_id == "unassigned:subtask-1"
        assert by_task["subtask-1"].status is ResultStatus.TIMED_OUT


class TestQuorumFailFast:

    @pytest.mark.asyncio
    async def test_quorum_above_member_count_raises_before_dispatch(self) -> None:
        invoker = ScriptedInvoker(default="A")
        with pytest.raises(InsufficientVotesError):
            await dispatch_round(_jobs("a", "b"), invoker, quorum=3, fail_fast=True)
        assert invoker.call_count() == 0

    @pytest.mark.asyncio
    async def test_unreachable_quorum_raises_with_results(self) -> None:
        invoker = ScriptedInvoker({"a": fail(), "b": fail(), "c": hang()})
        with pytest.raises(InsufficientVotesError) as exc_info:
            await dispatch_round(_jobs("a", "b", "c"), invoker, quorum=2, fail_fast=True)
        err = exc_info.value
        assert err.min_votes == 2
        assert err.completed == 0
        assert len(err.results) == 3

    @pytest.mark.asyncio
    async def test_quorum_met(self) -> None:
        invoker = ScriptedInvoker({"a": "A", "b": "A", "c": fail()})
        results = await dispatch_round(_jobs("a", "b", "c"), invoker, quorum=2, fail_fast=True)
        assert sum(r.completed for r in results) == 2


class TestRoundEvents:

    @pytest.mark.asyncio
    async def test_events_and_audit(self, context: RunContext) -> None:
        invoker = ScriptedInvoker({"a": "A", "b": fail()})
        await dispatch_round(_jobs("a", "b"), invoker, context=context, label="peer")
        store = context.event_store
        assert len(store.query(event_type=MemberDispatched)) == 2
        assert len(store.query(event_type=MemberCompleted)) == 1
        assert len(store.query(event_type=MemberFailed)) == 1
        rounds = context.audit.query(kind="round", label="peer")
        assert len(rounds) == 1
        assert len(rounds[0].results) == 2
