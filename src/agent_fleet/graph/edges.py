"""Conditional edge functions for the investigation graph.

These functions route between nodes based on ``stop_reason``.
"""

from __future__ import annotations

from typing import Any, Literal


def after_plan(state: dict[str, Any]) -> Literal["execute", "synthesize"]:
    """After plan, run the steps unless the loop has already stopped.

    A cancelled, expired or failed planning step goes straight to synthesis.
    """
    if state.get("stop_reason"):
        return "synthesize"
    return "execute"


def after_evaluate(state: dict[str, Any]) -> Literal["planning", "synthesize"]:
    """After evaluate, loop back to planning or finish."""
    if state.get("stop_reason"):
        return "synthesize"
    return "planning"
