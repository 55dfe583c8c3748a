"""Domain exceptions for the agent fleet engine.

All domain-specific exceptions inherit from ``FleetError`` so callers can
catch the full family with a single ``except`` clause when needed.

Only spec-invalidity and irrecoverable round failures surface as run-level
errors.  Failures of a single member are recorded on its ``AgentResult`` and
algorithm-level failures to agree are returned as a ``ConsensusDecision``
without a decision.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class FleetError(Exception):
    """Base exception for all agent fleet errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class InvalidSpecError(FleetError):
    """Raised when a fleet specification violates one of its invariants.

    Validation runs before any member is dispatched, so no work is lost.
    """

    def __init__(
        self,
        message: str = "Invalid fleet specification",
        spec_name: str = "",
        issues: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.spec_name = spec_name
        self.issues: list[str] = issues or []


class MemberError(FleetError):
    """Raised by an invoker when a single member invocation fails.

    The dispatcher converts it into a ``failed`` result; it never aborts a
    round on its own.
    """

    def __init__(
        self,
        message: str = "Member invocation failed",
        member_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.member_id = member_id


class MemberTimeoutError(MemberError):
    """Raised when a member invocation exceeds its deadline."""

    def __init__(
        self,
        message: str = "Member invocation timed out",
        member_id: str = "",
        timeout: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, member_id, details)
        self.timeout = timeout


class InsufficientVotesError(FleetError):
    """Raised when a round cannot reach ``min_votes`` completed results.

    Carries every result collected so far so the caller can still show what
    happened.
    """

    def __init__(
        self,
        message: str = "Insufficient votes",
        min_votes: int = 0,
        completed: int = 0,
        results: Sequence[Any] = (),
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.min_votes = min_votes
        self.completed = completed
        self.results: tuple[Any, ...] = tuple(results)


class PlanParseError(FleetError):
    """Raised when a manager or planner output cannot be read as a plan."""

    def __init__(
        self,
        message: str = "Could not parse plan",
        member_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.member_id = member_id
