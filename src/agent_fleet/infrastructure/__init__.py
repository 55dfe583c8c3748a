"""Infrastructure layer for the agent fleet engine.

Re-exports the public API surface for convenience::

    from agent_fleet.infrastructure import (
        AsyncEventBus, EventStore,
        ComponentRegistry, registry,
        ConsensusConfig, TieredConfig, DeepConfig, ExecutorConfig,
        SharedContextStore,
    )
"""

from agent_fleet.infrastructure.config import (
    ConsensusConfig,
    DeepConfig,
    ExecutorConfig,
    TieredConfig,
    load_config_from_json,
)
from agent_fleet.infrastructure.context_store import (
    ContextEntry,
    SharedContextStore,
)
from agent_fleet.infrastructure.event_bus import (
    AsyncEventBus,
    EventStore,
)
from agent_fleet.infrastructure.registry import (
    ComponentRegistry,
    registry,
)

__all__ = [
    # Event bus
    "AsyncEventBus",
    "EventStore",
    # Registry
    "ComponentRegistry",
    "registry",
    # Configuration
    "ConsensusConfig",
    "TieredConfig",
    "DeepConfig",
    "ExecutorConfig",
    "load_config_from_json",
    # Shared context
    "ContextEntry",
    "SharedContextStore",
]
