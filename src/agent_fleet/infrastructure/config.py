"""Configuration dataclasses for the agent fleet engine.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations.  No third-party dependencies -- just
stdlib ``dataclasses``.

Configs are **frozen** (``frozen=True``) so a run can share them between
concurrent rounds without risking silent mutation.  Reading them from files is
the caller's business; ``from_dict`` accepts already-parsed plain data.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any

from agent_fleet.domain.enums import (
    ConfidenceSource,
    ConsensusAlgorithm,
    ContextStrategy,
    FinalAggregation,
    TaskDistribution,
)


def _enum_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Replace enum members in *data* (recursively) by their values."""
    out: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            out[key] = value.value
        elif isinstance(value, dict):
            out[key] = _enum_dict(value)
        else:
            out[key] = value
    return out


# ===================================================================== #
#  Consensus Configuration                                               #
# ===================================================================== #

@dataclass(frozen=True)
class ConsensusConfig:
    """Parameters for reducing one round of results to a decision.

    Attributes
    ----------
    algorithm:
        Which consensus algorithm resolves the round.
    min_votes:
        Completed results required before a decision may be produced.
        ``None`` means a simple majority of the dispatched members.
    timeout:
        Round deadline in seconds.  Members still running when it elapses
        are recorded as timed out.
    allow_partial:
        If ``True``, a round below quorum still resolves over whatever
        completed results exist (at least one).
    min_confidence:
        Minimum weighted share required by the ``weighted`` algorithm.
    weights:
        Per-member voting weights, used when a member declares none.
    approval_timeout:
        Seconds to wait for a human approver on ``human_review`` rounds.
    """

    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.MAJORITY
    min_votes: int | None = None
    timeout: float = 60.0
    allow_partial: bool = False
    min_confidence: float = 0.0
    weights: Mapping[str, float] = field(default_factory=dict)
    approval_timeout: float = 300.0

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if not isinstance(self.algorithm, ConsensusAlgorithm):
            raise ValueError(f"algorithm must be a ConsensusAlgorithm, got {self.algorithm!r}")
        if self.min_votes is not None and self.min_votes < 1:
            raise ValueError(f"min_votes must be >= 1, got {self.min_votes}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if not (0.0 <= self.min_confidence <= 1.0):
            raise ValueError(
                f"min_confidence must be in [0, 1], got {self.min_confidence}"
            )
        for member_id, weight in self.weights.items():
            if weight <= 0:
                raise ValueError(
                    f"weight for '{member_id}' must be positive, got {weight}"
                )
        if self.approval_timeout <= 0:
            raise ValueError(
                f"approval_timeout must be positive, got {self.approval_timeout}"
            )

    def quorum(self, dispatched: int) -> int:
        """Return the effective ``min_votes`` for a round of *dispatched* members."""
        if self.min_votes is not None:
            return self.min_votes
        return max(1, dispatched // 2 + 1)

    def with_min_votes(self, min_votes: int) -> ConsensusConfig:
        return replace(self, min_votes=min_votes)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["weights"] = dict(self.weights)
        return _enum_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConsensusConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        if "timeout_ms" in data and "timeout" not in data:
            filtered["timeout"] = float(data["timeout_ms"]) / 1000.0
        if "algorithm" in filtered:
            filtered["algorithm"] = ConsensusAlgorithm(filtered["algorithm"])
        if "weights" in filtered:
            filtered["weights"] = {k: float(v) for k, v in filtered["weights"].items()}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Tiered Configuration                                                  #
# ===================================================================== #

@dataclass(frozen=True)
class TieredConfig:
    """Parameters for tiered coordination.

    Attributes
    ----------
    final_aggregation:
        How the last tier becomes the final report.
    synthesizer:
        Member id invoked once over the accumulated context when
        ``final_aggregation`` is ``manager_synthesis``.
    pass_all_results:
        Default forwarding rule: forward every raw result (``True``) or only
        the tier's decision (``False``).
    pass_all_tiers:
        Tier indices that forward every raw result regardless of the default.
    optional_tiers:
        Tier indices whose quorum failure is tolerated.
    tier_consensus:
        Per-tier consensus configuration, keyed by tier index.
    """

    final_aggregation: FinalAggregation = FinalAggregation.CONSENSUS
    synthesizer: str | None = None
    pass_all_results: bool = False
    pass_all_tiers: tuple[int, ...] = ()
    optional_tiers: tuple[int, ...] = ()
    tier_consensus: Mapping[int, ConsensusConfig] = field(default_factory=dict)

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if not isinstance(self.final_aggregation, FinalAggregation):
            raise ValueError(
                f"final_aggregation must be a FinalAggregation, got {self.final_aggregation!r}"
            )
        if self.final_aggregation is FinalAggregation.MANAGER_SYNTHESIS and not self.synthesizer:
            raise ValueError("manager_synthesis aggregation requires a synthesizer")
        for index in (*self.pass_all_tiers, *self.optional_tiers, *self.tier_consensus):
            if index < 0:
                raise ValueError(f"tier indices must be >= 0, got {index}")
        for cfg in self.tier_consensus.values():
            cfg.validate()

    def forwards_all(self, tier: int) -> bool:
        return self.pass_all_results or tier in self.pass_all_tiers

    def is_optional(self, tier: int) -> bool:
        return tier in self.optional_tiers

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_aggregation": self.final_aggregation.value,
            "synthesizer": self.synthesizer,
            "pass_all_results": self.pass_all_results,
            "pass_all_tiers": list(self.pass_all_tiers),
            "optional_tiers": list(self.optional_tiers),
            "tier_consensus": {
                str(k): v.to_dict() for k, v in self.tier_consensus.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TieredConfig:
        cfg = cls(
            final_aggregation=FinalAggregation(
                data.get("final_aggregation", FinalAggregation.CONSENSUS.value)
            ),
            synthesizer=data.get("synthesizer"),
            pass_all_results=bool(data.get("pass_all_results", False)),
            pass_all_tiers=tuple(int(t) for t in data.get("pass_all_tiers", ())),
            optional_tiers=tuple(int(t) for t in data.get("optional_tiers", ())),
            tier_consensus={
                int(k): ConsensusConfig.from_dict(v)
                for k, v in data.get("tier_consensus", {}).items()
            },
        )
        cfg.validate()
        return cfg


# ===================================================================== #
#  Deep Investigation Configuration                                      #
# ===================================================================== #

@dataclass(frozen=True)
class DeepConfig:
    """Parameters for the deep plan / execute / evaluate loop.

    Attributes
    ----------
    planner:
        Member id that turns the task and current findings into steps.
    synthesizer:
        Member id that writes the final report from the findings.
    confidence_source:
        Which member reports the convergence confidence.  There is no
        default: a loop without an explicit source is a configuration error.
    scorer:
        Member id scoring the findings when ``confidence_source`` is
        ``scorer``.
    summarizer:
        Member id compressing findings under the ``summarized`` strategy.
    max_iterations:
        Hard upper limit on plan / execute / evaluate cycles.
    confidence_threshold:
        Stop early once the iteration confidence reaches this value.
    context_strategy:
        How each round's findings are folded into the running findings.
    window_size:
        Findings kept by the ``windowed`` strategy.
    concurrency:
        Maximum steps executing at once.
    step_timeout:
        Per-step deadline in seconds.
    iteration_timeout:
        Optional deadline for an entire execution round.
    """

    planner: str = ""
    synthesizer: str = ""
    confidence_source: ConfidenceSource | None = None
    scorer: str | None = None
    summarizer: str | None = None
    max_iterations: int = 3
    confidence_threshold: float = 0.8
    context_strategy: ContextStrategy = ContextStrategy.CUMULATIVE
    window_size: int = 10
    concurrency: int = 4
    step_timeout: float = 120.0
    iteration_timeout: float | None = None

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if not self.planner:
            raise ValueError("deep mode requires a planner member")
        if not self.synthesizer:
            raise ValueError("deep mode requires a synthesizer member")
        if self.confidence_source is None:
            raise ValueError(
                "deep mode requires an explicit confidence_source "
                "('planner' or 'scorer')"
            )
        if self.confidence_source is ConfidenceSource.SCORER and not self.scorer:
            raise ValueError("confidence_source 'scorer' requires a scorer member")
        if self.context_strategy is ContextStrategy.SUMMARIZED and not self.summarizer:
            raise ValueError("context_strategy 'summarized' requires a summarizer member")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ValueError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.step_timeout <= 0:
            raise ValueError(f"step_timeout must be positive, got {self.step_timeout}")
        if self.iteration_timeout is not None and self.iteration_timeout <= 0:
            raise ValueError(
                f"iteration_timeout must be positive, got {self.iteration_timeout}"
            )

    def member_ids(self) -> tuple[str, ...]:
        """Return every member id this configuration refers to."""
        ids = [self.planner, self.synthesizer]
        if self.scorer:
            ids.append(self.scorer)
        if self.summarizer:
            ids.append(self.summarizer)
        return tuple(ids)

    def to_dict(self) -> dict[str, Any]:
        return _enum_dict(asdict(self))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeepConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        if filtered.get("confidence_source") is not None:
            filtered["confidence_source"] = ConfidenceSource(filtered["confidence_source"])
        if "context_strategy" in filtered:
            filtered["context_strategy"] = ContextStrategy(filtered["context_strategy"])
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Executor Configuration                                                #
# ===================================================================== #

@dataclass(frozen=True)
class ExecutorConfig:
    """Runtime knobs shared by every dispatch round.

    Attributes
    ----------
    concurrency:
        Maximum member invocations in flight within one round.
    member_timeout:
        Optional per-invocation deadline in seconds; the round deadline
        always applies as well.
    distribution:
        Slot selection policy for swarm mode.
    seed:
        Seed for the ``random`` distribution (reproducible tests).
    """

    concurrency: int = 8
    member_timeout: float | None = None
    distribution: TaskDistribution = TaskDistribution.ROUND_ROBIN
    seed: int | None = None

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.member_timeout is not None and self.member_timeout <= 0:
            raise ValueError(
                f"member_timeout must be positive, got {self.member_timeout}"
            )

    def to_dict(self) -> dict[str, Any]:
        return _enum_dict(asdict(self))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExecutorConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        if "distribution" in filtered:
            filtered["distribution"] = TaskDistribution(filtered["distribution"])
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  JSON helper                                                           #
# ===================================================================== #

_CONFIG_MAP: dict[str, Any] = {
    "consensus": ConsensusConfig,
    "tiered": TieredConfig,
    "deep": DeepConfig,
    "executor": ExecutorConfig,
}


def load_config_from_json(json_str: str) -> dict[str, Any]:
    """Parse a JSON string into a dict of typed config objects.

    The JSON is expected to be an object whose top-level keys correspond to
    config section names (``consensus``, ``tiered``, ``deep``,
    ``executor``).  Unknown sections are preserved as raw dicts.

    Returns a dict mapping section name -> config instance (or raw dict).
    """
    raw = json.loads(json_str)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    result: dict[str, Any] = {}
    for section, data in raw.items():
        cls = _CONFIG_MAP.get(section)
        if cls is not None and isinstance(data, dict):
            result[section] = cls.from_dict(data)
        else:
            result[section] = data
    return result
