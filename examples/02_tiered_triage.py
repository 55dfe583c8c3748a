#!/usr/bin/env python3
"""Example 02: Evidence collectors feeding a triage judge.

Demonstrates:
- A two-tier fleet where tier 0 forwards every collector's evidence
- A judge in tier 1 deciding over the accumulated context
- An optional tier that is skipped when its member fails

Run:
    PYTHONPATH=src python examples/02_tiered_triage.py
"""

from __future__ import annotations

import asyncio
from typing import Any

from agent_fleet import FleetMember, FleetRunner, FleetSpec, TieredConfig
from agent_fleet.domain.enums import CoordinationMode
from agent_fleet.infrastructure.config import ConsensusConfig
from agent_fleet.presentation.console import RunConsole
from agent_fleet.testing import ScriptedInvoker, fail


def judge(context: dict[str, Any]) -> str:
    evidence = context["tiers"][0]
    if any("OOM" in str(item["output"]) for item in evidence):
        return "memory leak in checkout-service"
    return "no root cause found"


async def main() -> None:
    spec = FleetSpec(
        name="incident-triage",
        members=(
            FleetMember("logs", tier=0),
            FleetMember("metrics", tier=0),
            FleetMember("traces", tier=0),
            FleetMember("enricher", tier=1),
            FleetMember("judge", tier=2),
        ),
        mode=CoordinationMode.TIERED,
        consensus=ConsensusConfig(min_votes=1, timeout=5.0),
        tiered=TieredConfig(pass_all_tiers=(0,), optional_tiers=(1,)),
    )
    invoker = ScriptedInvoker(
        {
            "logs": "OOMKilled x14 in checkout-service",
            "metrics": "memory climbing 3%/min",
            "traces": "p99 latency spike at 10:42",
            "enricher": fail("CMDB unreachable"),
            "judge": judge,
        }
    )
    result = await FleetRunner(invoker).run(spec, {"alert": "checkout 5xx"})
    RunConsole().print_run(result)


if __name__ == "__main__":
    asyncio.run(main())
