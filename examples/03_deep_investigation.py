#!/usr/bin/env python3
"""Example 03: Iterative root-cause investigation.

Demonstrates:
- A deep fleet whose planner reports its confidence every iteration
- Workers dispatched per plan step, findings accumulated by the controller
- The loop converging once confidence crosses the threshold

Run:
    PYTHONPATH=src python examples/03_deep_investigation.py
"""

from __future__ import annotations

import asyncio
from typing import Any

from agent_fleet import DeepConfig, FleetMember, FleetRunner, FleetSpec
from agent_fleet.domain.enums import ConfidenceSource, CoordinationMode
from agent_fleet.domain.values import AgentOutput
from agent_fleet.presentation.console import RunConsole
from agent_fleet.testing import ScriptedInvoker, steps


def planner(payload: dict[str, Any]) -> Any:
    iteration = payload["iteration"]
    if iteration == 0:
        plan_steps = [
            {"worker": "k8s", "input": "pod restarts in payments"},
            {"worker": "db", "input": "slow queries last hour"},
        ]
        return AgentOutput({"steps": plan_steps}, confidence=0.4)
    plan_steps = [{"worker": "db", "input": "lock waits on ledger"}]
    return AgentOutput({"steps": plan_steps}, confidence=0.88)


def synthesizer(payload: dict[str, Any]) -> str:
    clues = "; ".join(str(f["output"]) for f in payload["findings"])
    return f"Root cause after {payload['iterations']} iteration(s): {clues}"


async def main() -> None:
    spec = FleetSpec(
        name="payments-rca",
        members=tuple(FleetMember(mid) for mid in ("planner", "k8s", "db", "writer")),
        mode=CoordinationMode.DEEP,
        deep=DeepConfig(
            planner="planner",
            synthesizer="writer",
            confidence_source=ConfidenceSource.PLANNER,
            confidence_threshold=0.85,
            max_iterations=4,
            step_timeout=5.0,
        ),
    )
    invoker = ScriptedInvoker(
        {
            "planner": planner,
            "k8s": "payments pods restarted 6 times (liveness timeout)",
            "db": steps("12 queries > 5s on ledger", "row lock contention from batch job"),
            "writer": synthesizer,
        }
    )
    result = await FleetRunner(invoker).run(spec, "payments latency incident")
    RunConsole().print_run(result)


if __name__ == "__main__":
    asyncio.run(main())
