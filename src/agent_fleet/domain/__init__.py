"""Domain layer for the agent fleet engine.

Re-exports all public domain types so that consumers can write::

    from agent_fleet.domain import FleetSpec, FleetMember, ConsensusDecision
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    AgentRole,
    ConfidenceSource,
    ConsensusAlgorithm,
    ContextStrategy,
    CoordinationMode,
    FinalAggregation,
    InvestigationPhase,
    InvestigationStopReason,
    NoDecisionReason,
    ReportStatus,
    ResultStatus,
    TaskDistribution,
)

# -- Exceptions ---------------------------------------------------------------
from .exceptions import (
    FleetError,
    InsufficientVotesError,
    InvalidSpecError,
    MemberError,
    MemberTimeoutError,
    PlanParseError,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    AgentOutput,
    AgentResult,
    ApprovalResponse,
    ConsensusDecision,
    FinalReport,
    FleetMember,
    InvestigationStep,
    Iteration,
    PendingDecision,
    TierOutcome,
    TierSpec,
    output_key,
)

# -- Domain Events ------------------------------------------------------------
from .events import (
    ConsensusFailed,
    ConsensusReached,
    DomainEvent,
    FleetRunCompleted,
    FleetRunStarted,
    IterationCompleted,
    MemberCompleted,
    MemberDispatched,
    MemberFailed,
    TierCompleted,
)

# -- Entities -----------------------------------------------------------------
from .entities import FleetMetrics, FleetSpec, InvestigationState

__all__ = [
    # enums
    "AgentRole",
    "ConfidenceSource",
    "ConsensusAlgorithm",
    "ContextStrategy",
    "CoordinationMode",
    "FinalAggregation",
    "InvestigationPhase",
    "InvestigationStopReason",
    "NoDecisionReason",
    "ReportStatus",
    "ResultStatus",
    "TaskDistribution",
    # exceptions
    "FleetError",
    "InsufficientVotesError",
    "InvalidSpecError",
    "MemberError",
    "MemberTimeoutError",
    "PlanParseError",
    # values
    "AgentOutput",
    "AgentResult",
    "ApprovalResponse",
    "ConsensusDecision",
    "FinalReport",
    "FleetMember",
    "InvestigationStep",
    "Iteration",
    "PendingDecision",
    "TierOutcome",
    "TierSpec",
    "output_key",
    # events
    "ConsensusFailed",
    "ConsensusReached",
    "DomainEvent",
    "FleetRunCompleted",
    "FleetRunStarted",
    "IterationCompleted",
    "MemberCompleted",
    "MemberDispatched",
    "MemberFailed",
    "TierCompleted",
    # entities
    "FleetMetrics",
    "FleetSpec",
    "InvestigationState",
]
