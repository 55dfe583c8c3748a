"""Tests for FleetSpec, InvestigationState and FleetMetrics."""

from __future__ import annotations

import pytest

from agent_fleet.domain.entities import FleetMetrics, FleetSpec, InvestigationState
from agent_fleet.domain.enums import (
    AgentRole,
    ConfidenceSource,
    ConsensusAlgorithm,
    CoordinationMode,
    InvestigationStopReason,
    ResultStatus,
)
from agent_fleet.domain.exceptions import InvalidSpecError
from agent_fleet.domain.values import ConsensusDecision, FleetMember, Iteration
from agent_fleet.infrastructure.config import ConsensusConfig, DeepConfig, TieredConfig
from tests.helpers.results import make_result


def _spec(*members: FleetMember, **kwargs: object) -> FleetSpec:
    return FleetSpec(name="fleet", members=members, **kwargs)  # type: ignore[arg-type]


class TestFleetSpecValidation:

    def test_valid_peer_spec(self, peer_spec: FleetSpec) -> None:
        peer_spec.validate()

    def test_empty_fleet(self) -> None:
        with pytest.raises(InvalidSpecError) as exc_info:
            _spec().validate()
        assert "at least one member" in exc_info.value.issues[0]

    def test_duplicate_ids(self) -> None:
        with pytest.raises(InvalidSpecError, match="duplicate member id 'a'"):
            _spec(FleetMember("a"), FleetMember("a")).validate()

    def test_min_votes_above_member_count(self) -> None:
        spec = _spec(FleetMember("a"), consensus=ConsensusConfig(min_votes=2))
        with pytest.raises(InvalidSpecError, match="min_votes"):
            spec.validate()

    def test_invalid_consensus_config_is_wrapped(self) -> None:
        spec = _spec(FleetMember("a"), consensus=ConsensusConfig(min_confidence=2.0))
        with pytest.raises(InvalidSpecError, match="consensus: min_confidence"):
            spec.validate()

    def test_all_issues_reported_together(self) -> None:
        spec = _spec(
            FleetMember("a"),
            FleetMember("a"),
            consensus=ConsensusConfig(min_votes=5),
        )
        with pytest.raises(InvalidSpecError) as exc_info:
            spec.validate()
        assert len(exc_info.value.issues) == 2
        assert exc_info.value.spec_name == "fleet"


class TestTieredValidation:

    def test_missing_tier_index(self) -> None:
        spec = _spec(FleetMember("a", tier=0), FleetMember("b"), mode=CoordinationMode.TIERED)
        with pytest.raises(InvalidSpecError, match="tier index"):
            spec.validate()

    def test_non_contiguous_tiers(self) -> None:
        spec = _spec(
            FleetMember("a", tier=0), FleetMember("b", tier=2), mode=CoordinationMode.TIERED
        )
        with pytest.raises(InvalidSpecError, match="contiguous"):
            spec.validate()

    def test_configured_tier_without_members(self) -> None:
        spec = _spec(
            FleetMember("a", tier=0),
            mode=CoordinationMode.TIERED,
            tiered=TieredConfig(optional_tiers=(1,)),
        )
        with pytest.raises(InvalidSpecError, match="tier 1 is configured"):
            spec.validate()

    def test_tier_min_votes_above_tier_size(self) -> None:
        spec = _spec(
            FleetMember("a", tier=0),
            FleetMember("b", tier=1),
            mode=CoordinationMode.TIERED,
            tiered=TieredConfig(tier_consensus={0: ConsensusConfig(min_votes=2)}),
        )
        with pytest.raises(InvalidSpecError, match="tier 0 min_votes"):
            spec.validate()

    def test_tiers_grouping(self) -> None:
        tier1_cfg = ConsensusConfig(algorithm=ConsensusAlgorithm.UNANIMOUS)
        spec = _spec(
            FleetMember("a", tier=0),
            FleetMember("b", tier=0),
            FleetMember("c", tier=1),
            mode=CoordinationMode.TIERED,
            tiered=TieredConfig(pass_all_tiers=(0,), tier_consensus={1: tier1_cfg}),
        )
        spec.validate()
        tiers = spec.tiers()
        assert [t.index for t in tiers] == [0, 1]
        assert [m.member_id for m in tiers[0].members] == ["a", "b"]
        assert tiers[0].pass_all_results
        assert tiers[0].consensus == spec.consensus
        assert not tiers[1].pass_all_results
        assert tiers[1].consensus is tier1_cfg
        assert tiers[1].label == "tier-1"


class TestHierarchicalAndDeepValidation:

    def test_hierarchical_needs_manager(self) -> None:
        spec = _spec(FleetMember("a"), FleetMember("b"), mode=CoordinationMode.HIERARCHICAL)
        with pytest.raises(InvalidSpecError, match="manager"):
            spec.validate()

    def test_hierarchical_needs_specialist(self) -> None:
        spec = _spec(
            FleetMember("boss", role=AgentRole.MANAGER), mode=CoordinationMode.HIERARCHICAL
        )
        with pytest.raises(InvalidSpecError, match="specialist"):
            spec.validate()

    def test_explicit_manager_wins(self, hierarchical_members: tuple[FleetMember, ...]) -> None:
        spec = _spec(*hierarchical_members, mode=CoordinationMode.HIERARCHICAL, manager="logs")
        assert spec.get_manager().member_id == "logs"
        assert [m.member_id for m in spec.specialists()] == ["boss", "metrics"]

    def test_deep_requires_config(self) -> None:
        spec = _spec(FleetMember("p"), mode=CoordinationMode.DEEP)
        with pytest.raises(InvalidSpecError, match="deep configuration"):
            spec.validate()

    def test_deep_requires_confidence_source(self) -> None:
        spec = _spec(
            FleetMember("p"),
            FleetMember("s"),
            mode=CoordinationMode.DEEP,
            deep=DeepConfig(planner="p", synthesizer="s"),
        )
        with pytest.raises(InvalidSpecError, match="confidence_source"):
            spec.validate()

    def test_deep_unknown_member(self) -> None:
        spec = _spec(
            FleetMember("p"),
            mode=CoordinationMode.DEEP,
            deep=DeepConfig(
                planner="p", synthesizer="ghost", confidence_source=ConfidenceSource.PLANNER
            ),
        )
        with pytest.raises(InvalidSpecError, match="unknown member 'ghost'"):
            spec.validate()


class TestFleetSpecHelpers:

    def test_weight_fallbacks(self) -> None:
        spec = _spec(
            FleetMember("a", weight=2.0),
            FleetMember("b"),
            FleetMember("c"),
            consensus=ConsensusConfig(weights={"a": 9.0, "b": 3.0}),
        )
        assert spec.weight_for("a") == 2.0
        assert spec.weight_for("b") == 3.0
        assert spec.weight_for("c") == 1.0

    def test_declaration_index(self, peer_spec: FleetSpec) -> None:
        assert peer_spec.declaration_index("gamma") == 2
        assert peer_spec.declaration_index("nobody") == 3

    def test_from_dict(self) -> None:
        spec = FleetSpec.from_dict(
            {
                "name": "triage",
                "mode": "tiered",
                "members": [
                    {"id": "logs", "tier": 0},
                    {"id": "metrics", "tier": 0},
                    {"id": "judge", "tier": 1, "role": "validator"},
                ],
                "consensus": {"algorithm": "majority", "timeout_ms": 1500},
                "tiered": {"pass_all_tiers": [0]},
            }
        )
        assert spec.mode is CoordinationMode.TIERED
        assert spec.consensus.timeout == 1.5
        assert spec.tiered is not None and spec.tiered.forwards_all(0)
        assert spec.get_member("judge").role is AgentRole.VALIDATOR

    def test_from_dict_wraps_bad_values(self) -> None:
        with pytest.raises(InvalidSpecError):
            FleetSpec.from_dict({"name": "x", "members": [{"id": "a"}], "mode": "telepathy"})


class TestInvestigationState:

    def test_record_and_stop(self) -> None:
        state = InvestigationState(task="t")
        r = make_result("w", "finding")
        state.record(Iteration(index=0, results=(r,), findings=("finding",), confidence=0.4))
        state.stop(InvestigationStopReason.CONVERGED)
        assert state.iterations_used == 1
        assert state.findings == ["finding"]
        assert state.confidence == 0.4
        assert state.terminal
        assert state.all_results() == [r]


class TestFleetMetrics:

    def test_counts_and_durations(self) -> None:
        metrics = FleetMetrics()
        metrics.record_round(
            [
                make_result("a", "x", sequence=0),
                make_result("b", "x", sequence=1),
                make_result("c", status=ResultStatus.FAILED, sequence=2),
                make_result("d", status=ResultStatus.TIMED_OUT, sequence=3),
                make_result("e", status=ResultStatus.CANCELLED, sequence=4),
            ]
        )
        metrics.record_decision(
            ConsensusDecision.reached(ConsensusAlgorithm.MAJORITY, "x", 1.0, ())
        )
        assert metrics.total == 5
        assert metrics.completed == 2
        assert metrics.failed == 1
        assert metrics.timed_out == 1
        assert metrics.cancelled == 1
        assert metrics.decisions_reached == 1
        assert metrics.mean_duration == pytest.approx(0.5)
        assert metrics.p95_duration == pytest.approx(0.5)
        assert metrics.success_rate == pytest.approx(0.4)

    def test_empty(self) -> None:
        metrics = FleetMetrics()
        assert metrics.mean_duration == 0.0
        assert metrics.to_dict()["success_rate"] == 0.0
