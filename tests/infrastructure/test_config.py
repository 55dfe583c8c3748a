"""Tests for configuration dataclasses."""

from __future__ import annotations

import json

import pytest

from agent_fleet.domain.enums import (
    ConfidenceSource,
    ConsensusAlgorithm,
    ContextStrategy,
    FinalAggregation,
    TaskDistribution,
)
from agent_fleet.infrastructure.config import (
    ConsensusConfig,
    DeepConfig,
    ExecutorConfig,
    TieredConfig,
    load_config_from_json,
)


class TestConsensusConfig:

    def test_defaults_validate(self) -> None:
        ConsensusConfig().validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_votes": 0},
            {"timeout": 0},
            {"min_confidence": 1.5},
            {"weights": {"a": -1.0}},
            {"approval_timeout": 0},
        ],
    )
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            ConsensusConfig(**kwargs).validate()

    @pytest.mark.parametrize("dispatched, expected", [(1, 1), (2, 2), (3, 2), (4, 3), (0, 1)])
    def test_default_quorum_is_simple_majority(self, dispatched: int, expected: int) -> None:
        assert ConsensusConfig().quorum(dispatched) == expected

    def test_explicit_quorum(self) -> None:
        assert ConsensusConfig(min_votes=2).quorum(10) == 2
        assert ConsensusConfig().with_min_votes(4).min_votes == 4

    def test_dict_round_trip(self) -> None:
        cfg = ConsensusConfig(
            algorithm=ConsensusAlgorithm.WEIGHTED, weights={"a": 2.0}, min_confidence=0.5
        )
        data = cfg.to_dict()
        assert data["algorithm"] == "weighted"
        assert ConsensusConfig.from_dict(data) == cfg

    def test_from_dict_ignores_unknown_keys(self) -> None:
        cfg = ConsensusConfig.from_dict({"algorithm": "unanimous", "colour": "blue"})
        assert cfg.algorithm is ConsensusAlgorithm.UNANIMOUS


class TestTieredConfig:

    def test_manager_synthesis_needs_synthesizer(self) -> None:
        with pytest.raises(ValueError, match="synthesizer"):
            TieredConfig(final_aggregation=FinalAggregation.MANAGER_SYNTHESIS).validate()

    def test_forwarding_rules(self) -> None:
        cfg = TieredConfig(pass_all_tiers=(1,), optional_tiers=(2,))
        assert not cfg.forwards_all(0)
        assert cfg.forwards_all(1)
        assert cfg.is_optional(2)
        assert TieredConfig(pass_all_results=True).forwards_all(7)

    def test_from_dict_with_tier_consensus(self) -> None:
        cfg = TieredConfig.from_dict(
            {
                "final_aggregation": "merge",
                "tier_consensus": {"1": {"algorithm": "weighted"}},
            }
        )
        assert cfg.final_aggregation is FinalAggregation.MERGE
        assert cfg.tier_consensus[1].algorithm is ConsensusAlgorithm.WEIGHTED
        assert cfg.to_dict()["tier_consensus"]["1"]["algorithm"] == "weighted"


class TestDeepConfig:

    def _valid(self, **kwargs: object) -> DeepConfig:
        base: dict = {
            "planner": "p",
            "synthesizer": "s",
            "confidence_source": ConfidenceSource.PLANNER,
        }
        base.update(kwargs)
        return DeepConfig(**base)

    def test_valid(self) -> None:
        self._valid().validate()

    def test_confidence_source_has_no_default(self) -> None:
        with pytest.raises(ValueError, match="confidence_source"):
            DeepConfig(planner="p", synthesizer="s").validate()

    def test_scorer_source_needs_scorer(self) -> None:
        with pytest.raises(ValueError, match="scorer"):
            self._valid(confidence_source=ConfidenceSource.SCORER).validate()

    def test_summarized_needs_summarizer(self) -> None:
        with pytest.raises(ValueError, match="summarizer"):
            self._valid(context_strategy=ContextStrategy.SUMMARIZED).validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": 0},
            {"confidence_threshold": 1.1},
            {"window_size": 0},
            {"concurrency": 0},
            {"step_timeout": 0},
            {"iteration_timeout": -1.0},
        ],
    )
    def test_invalid_ranges(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            self._valid(**kwargs).validate()

    def test_member_ids(self) -> None:
        cfg = self._valid(scorer="judge", summarizer="squash")
        assert cfg.member_ids() == ("p", "s", "judge", "squash")

    def test_from_dict(self) -> None:
        cfg = DeepConfig.from_dict(
            {
                "planner": "p",
                "synthesizer": "s",
                "confidence_source": "scorer",
                "scorer": "judge",
                "context_strategy": "windowed",
            }
        )
        assert cfg.confidence_source is ConfidenceSource.SCORER
        assert cfg.context_strategy is ContextStrategy.WINDOWED


class TestExecutorConfig:

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError, match="concurrency"):
            ExecutorConfig(concurrency=0).validate()

    def test_from_dict(self) -> None:
        cfg = ExecutorConfig.from_dict({"distribution": "least_loaded", "seed": 7})
        assert cfg.distribution is TaskDistribution.LEAST_LOADED
        assert cfg.seed == 7


class TestLoadConfigFromJson:

    def test_sections_become_configs(self) -> None:
        raw = json.dumps(
            {
                "consensus": {"algorithm": "majority", "min_votes": 2},
                "executor": {"concurrency": 2},
                "custom": {"anything": True},
            }
        )
        configs = load_config_from_json(raw)
        assert isinstance(configs["consensus"], ConsensusConfig)
        assert configs["consensus"].min_votes == 2
        assert isinstance(configs["executor"], ExecutorConfig)
        assert configs["custom"] == {"anything": True}

    def test_top_level_must_be_object(self) -> None:
        with pytest.raises(ValueError, match="object"):
            load_config_from_json("[1, 2]")

    def test_invalid_section_raises(self) -> None:
        with pytest.raises(ValueError):
            load_config_from_json(json.dumps({"deep": {"planner": "p"}}))
