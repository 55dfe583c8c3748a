"""Application services: dispatch, consensus, coordination and the runner."""

from agent_fleet.services.approval import (
    AutoApprover,
    BaseApprover,
    CallbackApprover,
    HumanReviewGate,
)
from agent_fleet.services.audit_trail import AuditEntry, FleetAuditTrail
from agent_fleet.services.consensus import (
    Ballot,
    BaseConsensusAlgorithm,
    ConsensusEngine,
    FirstWinsAlgorithm,
    HumanReviewAlgorithm,
    MajorityAlgorithm,
    UnanimousAlgorithm,
    VoteGroup,
    WeightedAlgorithm,
)
from agent_fleet.services.context import RunContext
from agent_fleet.services.deep import DeepInvestigator
from agent_fleet.services.dispatch import DispatchJob, dispatch_round
from agent_fleet.services.executor import (
    BaseCoordinator,
    ExecutionResult,
    FleetExecutor,
    HierarchicalCoordinator,
    PeerCoordinator,
    PipelineCoordinator,
    SwarmCoordinator,
)
from agent_fleet.services.invoker import (
    AgentReply,
    BaseAgentInvoker,
    CallableInvoker,
    ChatModelInvoker,
)
from agent_fleet.services.plans import (
    DelegationPlan,
    InvestigationPlan,
    parse_delegation_plan,
    parse_investigation_plan,
)
from agent_fleet.services.runner import FleetRunner, FleetRunResult, run_fleet
from agent_fleet.services.tiered import TieredCoordinator, TieredOutcome

__all__ = [
    "AgentReply",
    "AuditEntry",
    "AutoApprover",
    "Ballot",
    "BaseAgentInvoker",
    "BaseApprover",
    "BaseConsensusAlgorithm",
    "BaseCoordinator",
    "CallableInvoker",
    "CallbackApprover",
    "ChatModelInvoker",
    "ConsensusEngine",
    "DeepInvestigator",
    "DelegationPlan",
    "DispatchJob",
    "ExecutionResult",
    "FirstWinsAlgorithm",
    "FleetAuditTrail",
    "FleetExecutor",
    "FleetRunResult",
    "FleetRunner",
    "HierarchicalCoordinator",
    "HumanReviewAlgorithm",
    "HumanReviewGate",
    "InvestigationPlan",
    "MajorityAlgorithm",
    "PeerCoordinator",
    "PipelineCoordinator",
    "RunContext",
    "SwarmCoordinator",
    "TieredCoordinator",
    "TieredOutcome",
    "UnanimousAlgorithm",
    "VoteGroup",
    "WeightedAlgorithm",
    "dispatch_round",
    "parse_delegation_plan",
    "parse_investigation_plan",
    "run_fleet",
]
