"""LangGraph state definition for the deep investigation loop.

Defines ``InvestigationGraphState``, a ``TypedDict`` that flows through the
investigation ``StateGraph``.  The audit channels (``iterations`` and
``results``) use ``Annotated[list, operator.add]`` so each node appends
without overwriting earlier entries.

Note: this module does NOT use ``from __future__ import annotations`` because
LangGraph resolves the type hints at runtime via ``get_type_hints()``.
"""

import operator
from typing import Annotated, Any, Optional, TypedDict

from agent_fleet.domain.enums import InvestigationStopReason
from agent_fleet.domain.values import AgentResult, FinalReport, InvestigationStep, Iteration


class InvestigationGraphState(TypedDict, total=False):
    """State carried between the plan / execute / evaluate / synthesize nodes."""

    # -- Loop control
    task: Any
    iteration: int
    max_iterations: int
    phase: str
    stop_reason: Optional[InvestigationStopReason]

    # -- Current iteration
    plan: list[InvestigationStep]
    plan_confidence: Optional[float]
    round_results: list[AgentResult]

    # -- Controller-owned context
    findings: list[Any]
    confidence: Optional[float]

    # -- Audit (append-only)
    iterations: Annotated[list[Iteration], operator.add]
    results: Annotated[list[AgentResult], operator.add]

    # -- Output
    report: Optional[FinalReport]
