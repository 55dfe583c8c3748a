"""Tests for the consensus engine and its built-in algorithms."""

from __future__ import annotations

import pytest

from agent_fleet.domain.enums import ConsensusAlgorithm, NoDecisionReason, ResultStatus
from agent_fleet.domain.values import FleetMember
from agent_fleet.infrastructure.config import ConsensusConfig
from agent_fleet.infrastructure.registry import CONSENSUS, ComponentRegistry
from agent_fleet.services.consensus import (
    Ballot,
    ConsensusEngine,
    FirstWinsAlgorithm,
    MajorityAlgorithm,
)
from tests.helpers.results import make_result, results_for


def _cfg(algorithm: ConsensusAlgorithm, **kwargs: object) -> ConsensusConfig:
    return ConsensusConfig(algorithm=algorithm, **kwargs)  # type: ignore[arg-type]


@pytest.fixture
def engine() -> ConsensusEngine:
    return ConsensusEngine()


class TestBallot:

    def test_equal_outputs_group_together(self) -> None:
        results = results_for(("a", {"x": 1, "y": 2}), ("b", {"y": 2, "x": 1}), ("c", "z"))
        ballot = Ballot(results, ConsensusConfig())
        assert [g.size for g in ballot.groups] == [2, 1]

    def test_plurality_tie_goes_to_earliest_declared(self) -> None:
        members = [FleetMember("a"), FleetMember("b")]
        # b arrives first but a is declared first
        results = results_for(("b", "B"), ("a", "A"))
        ballot = Ballot(results, ConsensusConfig(), members)
        assert ballot.plurality().output == "A"

    def test_tie_without_members_uses_arrival(self) -> None:
        results = results_for(("b", "B"), ("a", "A"))
        assert Ballot(results, ConsensusConfig()).plurality().output == "B"

    def test_weights_prefer_member_then_config(self) -> None:
        members = [FleetMember("a", weight=3.0), FleetMember("b")]
        ballot = Ballot([], ConsensusConfig(weights={"a": 1.0, "b": 2.0}), members)
        assert ballot.weight_of("a") == 3.0
        assert ballot.weight_of("b") == 2.0
        assert ballot.weight_of("c") == 1.0


class TestFirstWins:

    def test_takes_first_arrival(self, engine: ConsensusEngine) -> None:
        results = [
            make_result("slow", "S", sequence=1, finished_at=5.0),
            make_result("fast", "F", sequence=0, finished_at=1.0),
        ]
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.FIRST_WINS, min_votes=1))
        assert decision.decided
        assert decision.output == "F"
        assert decision.dissenting == ("slow",)

    def test_stops_early_once_quorum_completes(self) -> None:
        cfg = _cfg(ConsensusAlgorithm.FIRST_WINS, min_votes=1)
        algorithm = FirstWinsAlgorithm()
        assert not algorithm.should_stop_early([], cfg, 3)
        assert algorithm.should_stop_early([make_result("a", "x")], cfg, 3)

    def test_majority_never_stops_early(self) -> None:
        cfg = _cfg(ConsensusAlgorithm.MAJORITY)
        assert not MajorityAlgorithm().should_stop_early(results_for(("a", 1), ("b", 1)), cfg, 3)


class TestMajority:

    def test_clear_majority(self, engine: ConsensusEngine) -> None:
        results = results_for(("a", "A"), ("b", "A"), ("c", "B"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.MAJORITY))
        assert decision.decided
        assert decision.output == "A"
        assert decision.confidence == pytest.approx(2 / 3)
        assert decision.dissenting == ("c",)

    def test_even_split_is_no_majority(self, engine: ConsensusEngine) -> None:
        results = results_for(("a", "A"), ("b", "A"), ("c", "B"), ("d", "B"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.MAJORITY))
        assert not decision.decided
        assert decision.reason is NoDecisionReason.NO_MAJORITY
        assert decision.output is None
        assert decision.confidence == 0.0
        assert len(decision.results) == 4

    def test_majority_counts_completed_only(self, engine: ConsensusEngine) -> None:
        results = [
            make_result("a", "A", sequence=0),
            make_result("b", "A", sequence=1),
            make_result("c", status=ResultStatus.FAILED, sequence=2),
        ]
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.MAJORITY))
        assert decision.decided
        assert decision.confidence == 1.0
        assert decision.dissenting == ()


class TestWeighted:

    def test_weights_pick_leader(self, engine: ConsensusEngine) -> None:
        members = [FleetMember("a", weight=1.5), FleetMember("b"), FleetMember("c")]
        results = results_for(("a", "A"), ("b", "A"), ("c", "B"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.WEIGHTED), members)
        assert decision.decided
        assert decision.output == "A"
        assert decision.confidence == pytest.approx(2.5 / 3.5)
        assert decision.dissenting == ("c",)

    def test_heavy_minority_beats_light_majority(self, engine: ConsensusEngine) -> None:
        cfg = _cfg(ConsensusAlgorithm.WEIGHTED, weights={"c": 5.0})
        results = results_for(("a", "A"), ("b", "A"), ("c", "B"))
        decision = engine.resolve(results, cfg)
        assert decision.output == "B"
        assert decision.dissenting == ("a", "b")

    def test_below_min_confidence(self, engine: ConsensusEngine) -> None:
        cfg = _cfg(ConsensusAlgorithm.WEIGHTED, min_confidence=0.9)
        results = results_for(("a", "A"), ("b", "A"), ("c", "B"))
        decision = engine.resolve(results, cfg)
        assert not decision.decided
        assert decision.reason is NoDecisionReason.BELOW_MIN_CONFIDENCE
        assert decision.dissenting == ("c",)


class TestUnanimous:

    def test_all_agree(self, engine: ConsensusEngine) -> None:
        results = results_for(("a", "A"), ("b", "A"), ("c", "A"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.UNANIMOUS))
        assert decision.decided
        assert decision.confidence == 1.0
        assert decision.dissenting == ()

    def test_disagreement_lists_minority(self, engine: ConsensusEngine) -> None:
        results = results_for(("a", "A"), ("b", "A"), ("c", "B"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.UNANIMOUS))
        assert not decision.decided
        assert decision.reason is NoDecisionReason.DISAGREEMENT
        assert decision.dissenting == ("c",)


class TestHumanReview:

    def test_never_decides_on_its_own(self, engine: ConsensusEngine) -> None:
        results = results_for(("a", "A"), ("b", "A"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.HUMAN_REVIEW))
        assert not decision.decided
        assert decision.reason is NoDecisionReason.PENDING_HUMAN_REVIEW


class TestQuorum:

    def test_insufficient_votes(self, engine: ConsensusEngine) -> None:
        results = [
            make_result("a", "A", sequence=0),
            make_result("b", status=ResultStatus.TIMED_OUT, sequence=1),
            make_result("c", status=ResultStatus.FAILED, sequence=2),
        ]
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.MAJORITY))
        assert not decision.decided
        assert decision.reason is NoDecisionReason.INSUFFICIENT_VOTES
        assert decision.votes == 1

    def test_allow_partial_resolves_below_quorum(self, engine: ConsensusEngine) -> None:
        results = [
            make_result("a", "A", sequence=0),
            make_result("b", status=ResultStatus.TIMED_OUT, sequence=1),
            make_result("c", status=ResultStatus.TIMED_OUT, sequence=2),
        ]
        cfg = _cfg(ConsensusAlgorithm.MAJORITY, min_votes=2, allow_partial=True)
        decision = engine.resolve(results, cfg)
        assert decision.decided
        assert decision.output == "A"

    def test_allow_partial_needs_one_completed(self, engine: ConsensusEngine) -> None:
        results = [make_result("a", status=ResultStatus.FAILED)]
        cfg = _cfg(ConsensusAlgorithm.MAJORITY, allow_partial=True)
        assert engine.resolve(results, cfg).reason is NoDecisionReason.INSUFFICIENT_VOTES

    @pytest.mark.parametrize("algorithm", list(ConsensusAlgorithm))
    def test_empty_ballot_is_insufficient_votes(
        self, engine: ConsensusEngine, algorithm: ConsensusAlgorithm
    ) -> None:
        cfg = _cfg(algorithm)
        results = (make_result("a", status=ResultStatus.FAILED),)
        decision = engine.algorithm_for(algorithm).decide(Ballot([], cfg), results, cfg)
        assert not decision.decided
        assert decision.reason is NoDecisionReason.INSUFFICIENT_VOTES
        assert decision.results == results


class TestDeterminism:

    @pytest.mark.parametrize("algorithm", list(ConsensusAlgorithm))
    def test_resolution_is_idempotent(
        self, engine: ConsensusEngine, algorithm: ConsensusAlgorithm
    ) -> None:
        results = results_for(("a", "A"), ("b", "B"), ("c", "A"))
        cfg = _cfg(algorithm)
        first = engine.resolve(results, cfg)
        second = engine.resolve(list(reversed(results)), cfg)
        assert first == second
        assert first.dissenting == second.dissenting


class TestCustomRegistry:

    def test_engine_uses_supplied_registry(self) -> None:
        components = ComponentRegistry()
        components.register_instance(CONSENSUS, ConsensusAlgorithm.MAJORITY, FirstWinsAlgorithm())
        engine = ConsensusEngine(components)
        results = results_for(("a", "A"), ("b", "B"), ("c", "B"))
        decision = engine.resolve(results, _cfg(ConsensusAlgorithm.MAJORITY))
        assert decision.output == "A"
