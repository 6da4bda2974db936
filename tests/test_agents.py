"""Tests for the agent registry."""

import pytest

from factory_agents_sim.agents import AgentRegistry, default_agents
from factory_agents_sim.errors import UnknownAgentError
from factory_agents_sim.models import AgentType, BreachFlags
from factory_agents_sim.randomness import ScriptedRandom


class TestAgentRegistry:
    """Tests for AgentRegistry."""

    @pytest.fixture
    def registry(self):
        return AgentRegistry()

    def test_default_agents_one_per_category(self, registry):
        agents = registry.agents()

        assert [a.id for a in agents] == [AgentType.THERMAL, AgentType.KINETIC, AgentType.ENERGY]
        assert all(a.is_active for a in agents)
        assert [a.load for a in agents] == [12, 8, 5]

    def test_duplicate_category_rejected(self):
        agents = default_agents() + default_agents()[:1]

        with pytest.raises(ValueError):
            AgentRegistry(agents)

    def test_set_active(self, registry):
        registry.set_active(AgentType.KINETIC, False)

        assert registry.is_active(AgentType.KINETIC) is False
        assert registry.is_active(AgentType.THERMAL) is True

    def test_toggle(self, registry):
        agent = registry.toggle(AgentType.ENERGY)
        assert agent.is_active is False

        agent = registry.toggle(AgentType.ENERGY)
        assert agent.is_active is True

    def test_unknown_category(self):
        registry = AgentRegistry(default_agents()[:1])

        with pytest.raises(UnknownAgentError):
            registry.get(AgentType.ENERGY)

    def test_refresh_load_for_active_agents(self, registry):
        registry.refresh_load(ScriptedRandom([0.0, 0.5, 0.999]))

        assert [a.load for a in registry.agents()] == [5, 15, 24]

    def test_refresh_load_zeroes_inactive_agents(self, registry):
        registry.set_active(AgentType.KINETIC, False)
        rand = ScriptedRandom([0.0, 0.999])

        registry.refresh_load(rand)

        assert registry.get(AgentType.THERMAL).load == 5
        assert registry.get(AgentType.KINETIC).load == 0
        assert registry.get(AgentType.ENERGY).load == 24
        assert rand.draws == 2

    def test_snapshot_is_detached(self, registry):
        snapshot = registry.snapshot()
        registry.set_active(AgentType.THERMAL, False)

        assert snapshot.is_active(AgentType.THERMAL) is True


class TestCoverage:
    """Tests for the recovery gate."""

    @pytest.fixture
    def registry(self):
        return AgentRegistry()

    def test_no_breach_is_always_covered(self, registry):
        for agent in registry.agents():
            agent.is_active = False

        assert registry.coverage_satisfied(BreachFlags()) is True

    def test_covered_when_needed_agents_active(self, registry):
        flags = BreachFlags(thermal=True, kinetic=True, energy=True)

        assert registry.coverage_satisfied(flags) is True

    def test_blocked_when_any_needed_agent_inactive(self, registry):
        registry.set_active(AgentType.KINETIC, False)

        assert registry.coverage_satisfied(BreachFlags(thermal=True, kinetic=True)) is False
        assert registry.coverage_satisfied(BreachFlags(kinetic=True)) is False

    def test_inactive_agent_irrelevant_without_its_breach(self, registry):
        registry.set_active(AgentType.KINETIC, False)

        assert registry.coverage_satisfied(BreachFlags(thermal=True, energy=True)) is True
