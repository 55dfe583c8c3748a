#!/usr/bin/env python3
"""Example 01: Three reviewers vote on a deployment verdict.

Demonstrates:
- Declaring a peer fleet from plain data with ``FleetSpec.from_dict``
- Weighted consensus with a dissenting minority
- Rendering the run with ``RunConsole``

Run:
    PYTHONPATH=src python examples/01_peer_consensus.py
"""

from __future__ import annotations

import asyncio
import logging

from agent_fleet import FleetRunner, FleetSpec
from agent_fleet.presentation.console import RunConsole
from agent_fleet.testing import ScriptedInvoker, reply

SPEC = {
    "name": "deploy-review",
    "mode": "peer",
    "members": [
        {"id": "senior", "weight": 1.5},
        {"id": "sre"},
        {"id": "intern"},
    ],
    "consensus": {"algorithm": "weighted", "timeout": 5.0},
}


async def main() -> None:
    spec = FleetSpec.from_dict(SPEC)
    invoker = ScriptedInvoker(
        {
            "senior": reply("ship", 0.9, delay=0.05),
            "sre": reply("ship", 0.7, delay=0.02),
            "intern": reply("hold", 0.4, delay=0.01),
        }
    )
    result = await FleetRunner(invoker).run(spec, {"change": "bump base image"})
    RunConsole().print_run(result)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
