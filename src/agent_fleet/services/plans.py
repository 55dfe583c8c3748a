"""Structured plans produced by managers and planners.

A hierarchical manager answers with a delegation list; a deep-mode planner
answers with ordered investigation steps.  Both are parsed with pydantic so
LLM-backed members can use the same models with ``with_structured_output``.
Parsing failures raise ``PlanParseError`` and are handled by the controller
that asked for the plan.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from agent_fleet.domain.exceptions import PlanParseError
from agent_fleet.domain.values import InvestigationStep

logger = logging.getLogger(__name__)


# -- Structured output schemas -----------------------------------------------


class Delegation(BaseModel):
    """One sub-task handed by a manager to a specialist."""

    specialist: str = Field(
        validation_alias=AliasChoices("specialist", "agent", "member", "worker"),
        description="Id of the specialist that should handle the sub-task",
    )
    input: Any = Field(default=None, description="Sub-input; defaults to the original task")


class DelegationPlan(BaseModel):
    """A manager's delegation list."""

    delegations: list[Delegation] = Field(default_factory=list)


class PlanStep(BaseModel):
    """One step of an investigation plan."""

    worker: str = Field(
        validation_alias=AliasChoices("worker", "agent", "member", "specialist"),
        description="Id of the worker that should run this step",
    )
    input: Any = Field(default=None, description="Sub-input for the worker")


class InvestigationPlan(BaseModel):
    """A planner's ordered steps plus an optional self-assessed confidence."""

    steps: list[PlanStep] = Field(default_factory=list)
    confidence: float | None = Field(default=None, ge=0, le=1)
    reasoning: str = ""


# -- Parsing -----------------------------------------------------------------


def _decode(raw: Any, member_id: str) -> Any:
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode()
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise PlanParseError(
                f"Plan from '{member_id}' is not valid JSON: {exc}", member_id=member_id
            ) from exc
    return raw


def _as_items(data: Any, key: str, name_field: str) -> Any:
    """Normalise list / single-item / bare-name shapes into ``{key: [...]}``."""
    if isinstance(data, Mapping):
        if key in data:
            return data
        if any(k in data for k in (name_field, "agent", "member", "worker", "specialist")):
            return {key: [data]}
        return data
    if isinstance(data, list):
        items = [{name_field: item} if isinstance(item, str) else item for item in data]
        return {key: items}
    return data


def parse_delegation_plan(raw: Any, member_id: str = "") -> DelegationPlan:
    """Parse a manager output into a ``DelegationPlan``.

    Accepts a ``DelegationPlan``, a mapping with ``delegations``, a bare
    list of ``{specialist, input}`` items (or specialist names), or the JSON
    text of any of those.
    """
    if isinstance(raw, DelegationPlan):
        return raw
    data = _as_items(_decode(raw, member_id), "delegations", "specialist")
    try:
        return DelegationPlan.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError(
            f"Delegation plan from '{member_id}' is malformed: {exc.error_count()} error(s)",
            member_id=member_id,
            details={"errors": exc.errors(include_url=False)},
        ) from exc


def parse_investigation_plan(raw: Any, member_id: str = "") -> InvestigationPlan:
    """Parse a planner output into an ``InvestigationPlan``."""
    if isinstance(raw, InvestigationPlan):
        return raw
    data = _as_items(_decode(raw, member_id), "steps", "worker")
    try:
        return InvestigationPlan.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError(
            f"Investigation plan from '{member_id}' is malformed: {exc.error_count()} error(s)",
            member_id=member_id,
            details={"errors": exc.errors(include_url=False)},
        ) from exc


def to_steps(plan: InvestigationPlan) -> tuple[InvestigationStep, ...]:
    return tuple(InvestigationStep(worker=s.worker, input=s.input) for s in plan.steps)
