"""Tests for the human review gate and approvers."""

from __future__ import annotations

import pytest

from agent_fleet.domain.enums import ConsensusAlgorithm, NoDecisionReason
from agent_fleet.domain.values import ConsensusDecision, FleetMember, PendingDecision
from agent_fleet.infrastructure.config import ConsensusConfig
from agent_fleet.services.approval import AutoApprover, CallbackApprover, HumanReviewGate
from agent_fleet.services.consensus import ConsensusEngine
from tests.helpers.results import results_for

_REVIEW = ConsensusConfig(algorithm=ConsensusAlgorithm.HUMAN_REVIEW)


def _pending() -> ConsensusDecision:
    results = results_for(("a", "B"), ("b", "A"), ("c", "A"))
    return ConsensusEngine().resolve(results, _REVIEW)


class TestHumanReviewGate:

    def test_propose_uses_plurality(self) -> None:
        pending = HumanReviewGate.propose(_pending(), _REVIEW, fleet_name="f")
        assert pending.proposed_output == "A"
        assert pending.proposed_confidence == pytest.approx(2 / 3)
        assert pending.fleet_name == "f"

    def test_propose_breaks_ties_by_declaration(self) -> None:
        results = results_for(("b", "B"), ("a", "A"))
        decision = ConsensusEngine().resolve(results, _REVIEW)
        members = [FleetMember("a"), FleetMember("b")]
        assert HumanReviewGate.propose(decision, _REVIEW, members).proposed_output == "A"

    @pytest.mark.asyncio
    async def test_other_decisions_pass_through(self) -> None:
        approver = AutoApprover()
        decided = ConsensusDecision.reached(ConsensusAlgorithm.MAJORITY, "x", 1.0, ())
        assert await HumanReviewGate(approver).review(decided, _REVIEW) is decided
        assert approver.requests == []

    @pytest.mark.asyncio
    async def test_auto_reject(self) -> None:
        gate = HumanReviewGate(AutoApprover(approve=False, name="robot"))
        decision = await gate.review(_pending(), _REVIEW)
        assert decision.reason is NoDecisionReason.REJECTED_BY_REVIEWER
        assert decision.explanation == "rejected by robot"

    @pytest.mark.asyncio
    async def test_async_callback_returning_bool(self) -> None:
        seen: list[PendingDecision] = []

        async def approve(pending: PendingDecision) -> bool:
            seen.append(pending)
            return True

        decision = await HumanReviewGate(CallbackApprover(approve, name="carol")).review(
            _pending(), _REVIEW
        )
        assert decision.decided
        assert decision.approver == "carol"
        assert decision.dissenting == ("a",)
        assert len(seen) == 1
