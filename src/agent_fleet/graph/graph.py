"""Build the deep investigation StateGraph.

``build_investigation_graph()`` wires the planning, execute, evaluate and
synthesize nodes into a compiled LangGraph implementing the bounded
plan / execute / evaluate loop.  Synthesis runs exactly once, on every exit
path.  The planning node is not called ``plan`` because that name is a state
key.
"""

from typing import Any

from langgraph.graph import END, START, StateGraph

from agent_fleet.graph.edges import after_evaluate, after_plan
from agent_fleet.graph.nodes import (
    InvestigationRuntime,
    make_evaluate_node,
    make_execute_node,
    make_plan_node,
    make_synthesize_node,
)
from agent_fleet.graph.state import InvestigationGraphState


def recursion_limit(max_iterations: int) -> int:
    """LangGraph super-step budget for *max_iterations* loop passes.

    Each pass visits plan, execute and evaluate; synthesis adds one step.
    """
    return 3 * max_iterations + 5


def build_investigation_graph(
    runtime: InvestigationRuntime,
    checkpointer: Any | None = None,
) -> Any:
    """Build and compile the investigation StateGraph.

    Parameters
    ----------
    runtime:
        Executor, loop configuration, members and run context, injected into
        every node by closure.
    checkpointer:
        Optional LangGraph checkpointer for persistence.

    Returns
    -------
    CompiledStateGraph
        A compiled graph ready for ``.ainvoke()``.
    """
    graph = StateGraph(InvestigationGraphState)

    graph.add_node("planning", make_plan_node(runtime))
    graph.add_node("execute", make_execute_node(runtime))
    graph.add_node("evaluate", make_evaluate_node(runtime))
    graph.add_node("synthesize", make_synthesize_node(runtime))

    graph.add_edge(START, "planning")
    graph.add_conditional_edges(
        "planning",
        after_plan,
        {"execute": "execute", "synthesize": "synthesize"},
    )
    graph.add_edge("execute", "evaluate")
    graph.add_conditional_edges(
        "evaluate",
        after_evaluate,
        {"planning": "planning", "synthesize": "synthesize"},
    )
    graph.add_edge("synthesize", END)

    compile_kwargs: dict[str, Any] = {}
    if checkpointer is not None:
        compile_kwargs["checkpointer"] = checkpointer
    return graph.compile(**compile_kwargs)
