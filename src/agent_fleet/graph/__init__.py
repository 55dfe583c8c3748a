"""LangGraph-native deep investigation loop.

Public API
----------
build_investigation_graph
    Build and compile the plan / execute / evaluate / synthesize graph.
InvestigationGraphState
    The TypedDict state flowing through the graph.
InvestigationRuntime
    Collaborators injected into every node.

Node factories (for advanced customisation):
    make_plan_node, make_execute_node, make_evaluate_node, make_synthesize_node

Edge functions:
    after_plan, after_evaluate
"""

from agent_fleet.graph.edges import after_evaluate, after_plan
from agent_fleet.graph.graph import build_investigation_graph, recursion_limit
from agent_fleet.graph.nodes import (
    InvestigationRuntime,
    make_evaluate_node,
    make_execute_node,
    make_plan_node,
    make_synthesize_node,
)
from agent_fleet.graph.state import InvestigationGraphState

__all__ = [
    "InvestigationGraphState",
    "InvestigationRuntime",
    "after_evaluate",
    "after_plan",
    "build_investigation_graph",
    "make_evaluate_node",
    "make_execute_node",
    "make_plan_node",
    "make_synthesize_node",
    "recursion_limit",
]
