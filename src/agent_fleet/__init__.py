"""agent-fleet: fleet coordination and consensus engine.

Dispatches teams of independent, unreliable agents under a coordination mode
(peer, hierarchical, pipeline, swarm, tiered, deep), collects their results
under time and failure constraints and reduces them to a single decision.
"""

__version__ = "0.1.0"

from agent_fleet.domain import (
    ConsensusDecision,
    FinalReport,
    FleetMember,
    FleetSpec,
)
from agent_fleet.infrastructure import (
    ConsensusConfig,
    DeepConfig,
    ExecutorConfig,
    TieredConfig,
)
from agent_fleet.services import (
    FleetRunner,
    FleetRunResult,
    RunContext,
    run_fleet,
)

__all__ = [
    "ConsensusConfig",
    "ConsensusDecision",
    "DeepConfig",
    "ExecutorConfig",
    "FinalReport",
    "FleetMember",
    "FleetRunResult",
    "FleetRunner",
    "FleetSpec",
    "RunContext",
    "TieredConfig",
    "run_fleet",
]
