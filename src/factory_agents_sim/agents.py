"""Registry of the autonomous recovery agents.

One agent exists per category. An anomaly can only be driven back to normal
while every category it needs is covered by an active agent.
"""

from typing import Dict, List, Optional

from .errors import UnknownAgentError
from .models import Agent, AgentType, BreachFlags
from .randomness import RandomSource, randint_below

# Active agents report a load in [LOAD_MIN, LOAD_MIN + LOAD_SPAN)
LOAD_MIN = 5
LOAD_SPAN = 20


def default_agents() -> List[Agent]:
    """The fixed agent set at startup."""
    return [
        Agent(
            id=AgentType.THERMAL,
            name="Thermal Dynamics Agent",
            description=(
                "Monitors thermal gradients. Uses explainable heat-map analysis "
                "to initiate liquid cooling bypasses."
            ),
            is_active=True,
            load=12,
        ),
        Agent(
            id=AgentType.KINETIC,
            name="Kinetic Stability Agent",
            description=(
                "Detects vibration harmonics. Employs counter-vibration algorithms "
                "for mechanical stabilization."
            ),
            is_active=True,
            load=8,
        ),
        Agent(
            id=AgentType.ENERGY,
            name="Energy Efficiency Agent",
            description=(
                "Optimizes power draw cycles. Throttles non-essential systems "
                "during peak demand anomalies."
            ),
            is_active=True,
            load=5,
        ),
    ]


class AgentRegistry:
    """Holds the agents, their active flags and load."""

    def __init__(self, agents: Optional[List[Agent]] = None):
        agents = agents if agents is not None else default_agents()
        self._agents: Dict[AgentType, Agent] = {}
        for agent in agents:
            if agent.id in self._agents:
                raise ValueError(f"Duplicate agent category: {agent.id.value}")
            self._agents[agent.id] = agent

    def get(self, category: AgentType) -> Agent:
        try:
            return self._agents[category]
        except KeyError:
            raise UnknownAgentError(category) from None

    def agents(self) -> List[Agent]:
        """Agents in category order (THERMAL, KINETIC, ENERGY)."""
        return [self._agents[t] for t in AgentType if t in self._agents]

    def is_active(self, category: AgentType) -> bool:
        return self.get(category).is_active

    def set_active(self, category: AgentType, active: bool) -> Agent:
        agent = self.get(category)
        agent.is_active = active
        return agent

    def toggle(self, category: AgentType) -> Agent:
        agent = self.get(category)
        return self.set_active(category, not agent.is_active)

    def refresh_load(self, rand: RandomSource) -> None:
        """Assign fresh loads; inactive agents report zero."""
        for agent in self.agents():
            if agent.is_active:
                agent.load = randint_below(rand, LOAD_SPAN, LOAD_MIN)
            else:
                agent.load = 0

    def coverage_satisfied(self, flags: BreachFlags) -> bool:
        """True if every needed category has an active agent."""
        return all(
            category in self._agents and self._agents[category].is_active
            for category in flags.needed()
        )

    def snapshot(self) -> "AgentRegistry":
        """Copy of the registry, detached from later toggles."""
        return AgentRegistry(
            [
                Agent(a.id, a.name, a.description, a.is_active, a.load)
                for a in self.agents()
            ]
        )
