"""Domain enumerations for the agent fleet engine.

These enums capture the fixed vocabularies used across the domain layer:
member roles, coordination modes, consensus algorithms, result statuses,
no-decision reasons, tier aggregation, deep-mode context strategies and the
terminal states of a run.
"""

from enum import Enum


class AgentRole(Enum):
    """Role a member plays inside its fleet."""

    WORKER = "worker"
    MANAGER = "manager"
    SPECIALIST = "specialist"
    VALIDATOR = "validator"
    COORDINATOR = "coordinator"


class CoordinationMode(Enum):
    """Topology used to dispatch a fleet's members."""

    PEER = "peer"  # everyone gets the same input concurrently
    HIERARCHICAL = "hierarchical"  # manager delegates to specialists
    PIPELINE = "pipeline"  # sequential handoff
    SWARM = "swarm"  # work queue drained by a bounded pool
    TIERED = "tiered"  # ordered stages, each a peer round
    DEEP = "deep"  # plan / execute / evaluate loop


class ConsensusAlgorithm(Enum):
    """Algorithms that reduce a round's results to one decision."""

    FIRST_WINS = "first_wins"
    MAJORITY = "majority"
    WEIGHTED = "weighted"
    UNANIMOUS = "unanimous"
    HUMAN_REVIEW = "human_review"


class TaskDistribution(Enum):
    """How swarm mode picks the next free worker slot."""

    ROUND_ROBIN = "round_robin"
    LEAST_LOADED = "least_loaded"
    RANDOM = "random"


class ResultStatus(Enum):
    """Terminal status of a single member invocation."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class NoDecisionReason(Enum):
    """Why a consensus round produced no decision."""

    INSUFFICIENT_VOTES = "insufficient_votes"
    NO_MAJORITY = "no_majority"
    DISAGREEMENT = "disagreement"
    BELOW_MIN_CONFIDENCE = "below_min_confidence"
    PENDING_HUMAN_REVIEW = "pending_human_review"
    REJECTED_BY_REVIEWER = "rejected_by_reviewer"
    APPROVAL_TIMEOUT = "approval_timeout"


class FinalAggregation(Enum):
    """How the last tier of a tiered pipeline becomes the final report."""

    CONSENSUS = "consensus"
    MERGE = "merge"
    MANAGER_SYNTHESIS = "manager_synthesis"


class ContextStrategy(Enum):
    """How deep mode folds each round's findings into the running context."""

    CUMULATIVE = "cumulative"
    WINDOWED = "windowed"
    SUMMARIZED = "summarized"


class ConfidenceSource(Enum):
    """Which member reports the convergence confidence in deep mode."""

    PLANNER = "planner"
    SCORER = "scorer"


class InvestigationPhase(Enum):
    """Finite-state-machine states of the deep investigation loop."""

    PLANNING = "planning"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class InvestigationStopReason(Enum):
    """Why the deep investigation loop left the planning cycle."""

    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"
    DEADLINE = "deadline"
    MISSING_CONFIDENCE = "missing_confidence"
    PLANNING_FAILED = "planning_failed"


class ReportStatus(Enum):
    """Quality flag attached to a final report."""

    COMPLETE = "complete"
    CONVERGED = "converged"
    LOW_CONFIDENCE = "low_confidence"  # budget exhausted below threshold
    INTERRUPTED = "interrupted"
    NO_DECISION = "no_decision"
    SYNTHESIS_FAILED = "synthesis_failed"
