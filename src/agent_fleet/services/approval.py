"""Human approval for ``human_review`` consensus rounds.

The consensus engine never decides a ``human_review`` round on its own; it
returns a pending decision.  ``HumanReviewGate`` hands that decision, with the
plurality output as the proposal, to a ``BaseApprover`` and turns the answer
into a final decision.

Classes
-------
BaseApprover
    Abstract async approval collaborator.
CallbackApprover
    Adapts a sync or async callable.
AutoApprover
    Approves (or rejects) everything; for tests and unattended runs.
HumanReviewGate
    Awaits the approver with ``approval_timeout``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

from agent_fleet.domain.enums import NoDecisionReason
from agent_fleet.domain.values import (
    ApprovalResponse,
    ConsensusDecision,
    FleetMember,
    PendingDecision,
)
from agent_fleet.infrastructure.config import ConsensusConfig
from agent_fleet.services.consensus import Ballot

logger = logging.getLogger(__name__)


class BaseApprover(ABC):
    """Collaborator that approves or rejects a pending decision."""

    @abstractmethod
    async def request_approval(self, pending: PendingDecision) -> ApprovalResponse:
        """Return the reviewer's answer for *pending*."""


class CallbackApprover(BaseApprover):
    """Delegate approval to ``fn(pending) -> ApprovalResponse | bool``."""

    def __init__(self, fn: Callable[[PendingDecision], Any], name: str = "callback") -> None:
        self._fn = fn
        self._name = name

    async def request_approval(self, pending: PendingDecision) -> ApprovalResponse:
        answer = self._fn(pending)
        if inspect.isawaitable(answer):
            answer = await answer
        if isinstance(answer, ApprovalResponse):
            return answer
        return ApprovalResponse(approved=bool(answer), approver=self._name)


class AutoApprover(BaseApprover):
    """Answer every request the same way."""

    def __init__(self, approve: bool = True, name: str = "auto") -> None:
        self._approve = approve
        self._name = name
        self.requests: list[PendingDecision] = []

    async def request_approval(self, pending: PendingDecision) -> ApprovalResponse:
        self.requests.append(pending)
        return ApprovalResponse(approved=self._approve, approver=self._name)


class HumanReviewGate:
    """Resolve pending ``human_review`` decisions through an approver.

    Parameters
    ----------
    approver:
        Collaborator asked for each pending decision.
    """

    def __init__(self, approver: BaseApprover) -> None:
        self._approver = approver

    @staticmethod
    def propose(
        decision: ConsensusDecision,
        cfg: ConsensusConfig,
        members: Sequence[FleetMember] = (),
        fleet_name: str = "",
    ) -> PendingDecision:
        """Build the proposal handed to the approver: the plurality output."""
        ballot = Ballot(decision.completed_results, cfg, members)
        leader = ballot.plurality()
        return PendingDecision(
            decision=decision,
            proposed_output=leader.output if leader else None,
            proposed_confidence=ballot.share(leader) if leader else 0.0,
            fleet_name=fleet_name,
        )

    async def review(
        self,
        decision: ConsensusDecision,
        cfg: ConsensusConfig,
        members: Sequence[FleetMember] = (),
        fleet_name: str = "",
    ) -> ConsensusDecision:
        """Await the approver and return the final decision.

        Decisions that are not pending review are returned unchanged.
        """
        if decision.reason is not NoDecisionReason.PENDING_HUMAN_REVIEW:
            return decision

        pending = self.propose(decision, cfg, members, fleet_name)
        logger.info(
            "Fleet %s: requesting human review (request %s)", fleet_name, pending.request_id
        )
        try:
            response = await asyncio.wait_for(
                self._approver.request_approval(pending), timeout=cfg.approval_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Fleet %s: no approval within %.1fs", fleet_name, cfg.approval_timeout
            )
            return ConsensusDecision.no_decision(
                decision.algorithm,
                NoDecisionReason.APPROVAL_TIMEOUT,
                f"no reviewer answer within {cfg.approval_timeout:g}s",
                decision.results,
                decision.dissenting,
            )

        if not response.approved:
            note = f": {response.comment}" if response.comment else ""
            return ConsensusDecision.no_decision(
                decision.algorithm,
                NoDecisionReason.REJECTED_BY_REVIEWER,
                f"rejected by {response.approver or 'reviewer'}{note}",
                decision.results,
                decision.dissenting,
            )

        return ConsensusDecision.reached(
            decision.algorithm,
            output=pending.proposed_output,
            confidence=pending.proposed_confidence,
            results=decision.results,
            dissenting=decision.dissenting,
            explanation=f"approved by {response.approver or 'reviewer'}",
            approver=response.approver,
        )
