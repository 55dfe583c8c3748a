"""Shared fixtures for the agent-fleet test suite."""

from __future__ import annotations

import pytest

from agent_fleet.domain.enums import (
    AgentRole,
    ConsensusAlgorithm,
    CoordinationMode,
)
from agent_fleet.domain.entities import FleetSpec
from agent_fleet.domain.values import FleetMember
from agent_fleet.infrastructure.config import ConsensusConfig
from agent_fleet.services.context import RunContext
from agent_fleet.services.executor import FleetExecutor
from agent_fleet.testing import ScriptedInvoker

# ---------------------------------------------------------------------------
# Member / spec fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def three_workers() -> tuple[FleetMember, ...]:
    return (
        FleetMember("alpha"),
        FleetMember("beta"),
        FleetMember("gamma"),
    )


@pytest.fixture
def peer_spec(three_workers: tuple[FleetMember, ...]) -> FleetSpec:
    """Three-member peer fleet resolved by majority."""
    return FleetSpec(
        name="peer-fleet",
        members=three_workers,
        mode=CoordinationMode.PEER,
        consensus=ConsensusConfig(algorithm=ConsensusAlgorithm.MAJORITY, timeout=2.0),
    )


@pytest.fixture
def hierarchical_members() -> tuple[FleetMember, ...]:
    return (
        FleetMember("boss", role=AgentRole.MANAGER),
        FleetMember("logs", role=AgentRole.SPECIALIST),
        FleetMember("metrics", role=AgentRole.SPECIALIST),
    )


# ---------------------------------------------------------------------------
# Runtime fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def context() -> RunContext:
    return RunContext()


@pytest.fixture
def agreeing_invoker() -> ScriptedInvoker:
    """Every member answers ``"A"``."""
    return ScriptedInvoker(default="A")


@pytest.fixture
def executor(agreeing_invoker: ScriptedInvoker) -> FleetExecutor:
    return FleetExecutor(agreeing_invoker)
