"""Simulation state: the single owned aggregate of fleet, agents and log.

All mutation goes through ``apply_tick`` and the command methods. Callers
that share a ``SimulationState`` between threads must serialize these calls
(see ``Simulator``).
"""

import logging
from collections import deque
from typing import Any, Callable, Dict, Iterator, List, Optional

from .agents import AgentRegistry
from .config import Config
from .errors import UnknownAgentError
from .event_log import GLOBAL_FACTORY_ID, SYSTEM_MACHINE_ID, EventLog
from .machine import MachineStateMachine
from .models import (
    AgentType,
    EventDraft,
    Factory,
    LogEvent,
    LogKind,
    Machine,
    MachineStatus,
)
from .randomness import RandomSource, SeededRandom
from .sensors import SensorModel, baseline_reading

logger = logging.getLogger(__name__)


def build_fleet(config: Config, now: int) -> List[Factory]:
    """Seed every factory's machines with the baseline reading and empty history."""
    factories = []
    for factory_config in config.factories:
        machines = [
            Machine(
                id=machine_id,
                name=f"Unit {i + 1}",
                factory_id=factory_config.id,
                current_reading=baseline_reading(now),
                history=deque(maxlen=config.simulation.history_limit),
            )
            for i, machine_id in enumerate(factory_config.machine_ids())
        ]
        factories.append(
            Factory(
                id=factory_config.id,
                name=factory_config.name,
                location=factory_config.location,
                machines=machines,
            )
        )
    return factories


def _parse_agent(category: Any) -> AgentType:
    if isinstance(category, AgentType):
        return category
    try:
        return AgentType(str(category).upper())
    except ValueError:
        raise UnknownAgentError(category) from None


class SimulationState:
    """Fleet, agent registry and event log, advanced one tick at a time."""

    def __init__(
        self,
        config: Optional[Config] = None,
        now: int = 0,
        rand: Optional[RandomSource] = None,
        registry: Optional[AgentRegistry] = None,
    ):
        self.config = config or Config.default()
        sim = self.config.simulation
        self.rand = rand or SeededRandom(sim.random_seed)
        self.registry = registry or AgentRegistry()
        self.log = EventLog(capacity=sim.log_capacity)
        self.sensor_model = SensorModel(
            thresholds=self.config.thresholds,
            recovery_duration_ms=sim.recovery_duration_ms,
            anomaly_probability=sim.anomaly_probability,
        )
        self.factories = build_fleet(self.config, now)
        self.tick_count = 0
        self.failed_updates = 0

        self._machines: Dict[str, MachineStateMachine] = {}
        for factory in self.factories:
            for machine in factory.machines:
                self._machines[machine.id] = MachineStateMachine(
                    machine, factory.name, self.sensor_model, self.log
                )
        logger.info(
            f"Initialized {len(self._machines)} machines across {len(self.factories)} factories."
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def machines(self) -> Iterator[Machine]:
        for factory in self.factories:
            yield from factory.machines

    def find_machine(self, machine_id: str) -> Optional[Machine]:
        state_machine = self._machines.get(machine_id)
        return state_machine.machine if state_machine else None

    def find_factory(self, factory_id: str) -> Optional[Factory]:
        for factory in self.factories:
            if factory.id == factory_id:
                return factory
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Detached, plain-data view of the whole simulation."""
        return {
            "tick": self.tick_count,
            "factories": [f.to_dict() for f in self.factories],
            "agents": [a.to_dict() for a in self.registry.agents()],
            "logs": [e.to_dict() for e in self.log.entries()],
        }

    def fleet_summary(self) -> Dict[str, int]:
        """Machine counts by status."""
        summary = {status.value: 0 for status in MachineStatus}
        for machine in self.machines():
            summary[machine.status.value] += 1
        summary["TOTAL"] = len(self._machines)
        return summary

    def anomaly_summary(self, factory_id: str) -> List[Dict[str, Any]]:
        """Critical machines of a factory with their latest anomaly entry."""
        factory = self.find_factory(factory_id)
        if factory is None:
            return []
        summary = []
        for machine in factory.critical_machines():
            latest = self.log.latest_anomaly_for(machine.id)
            summary.append(
                {
                    "machine_id": machine.id,
                    "name": machine.name,
                    "critical_at": machine.critical_at,
                    "message": latest.message if latest else "Stabilization in progress",
                    "reasoning": latest.reasoning if latest else None,
                }
            )
        return summary

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def apply_tick(self, now: int) -> List[LogEvent]:
        """Advance every machine exactly once, then refresh agent loads.

        A failure in one machine's update is logged and leaves that machine
        untouched; the remaining machines still advance.
        """
        coverage = self.registry.snapshot()
        events: List[LogEvent] = []

        for machine in self.machines():
            state_machine = self._machines[machine.id]
            try:
                event = state_machine.advance(now, coverage, self.rand)
            except Exception:
                self.failed_updates += 1
                logger.exception(f"Tick {self.tick_count + 1}: update of {machine.id} failed")
                continue
            if event is not None:
                events.append(event)

        self.registry.refresh_load(self.rand)
        self.tick_count += 1
        return events

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def toggle_agent(self, category: Any, now: int) -> bool:
        try:
            agent = self.registry.toggle(_parse_agent(category))
        except UnknownAgentError:
            logger.warning(f"Received toggle for unknown agent: {category}")
            return False

        logger.info(f"Agent {agent.id.value} {'activated' if agent.is_active else 'deactivated'}")
        state = "ACTIVE" if agent.is_active else "OFFLINE"
        recovery = "RESUMED" if agent.is_active else "SUSPENDED"
        self._system_event(
            now,
            f"Agent Lifecycle Change: {agent.name} is now {state}. "
            f"Recovery operations for related anomalies are {recovery}.",
        )
        return True

    def restart_agent(self, category: Any, now: int) -> Optional[Callable[[int], LogEvent]]:
        """Log the restart and return the deferred completion step.

        The caller runs the returned callable once the restart delay has
        elapsed. Returns None for an unknown agent.
        """
        try:
            agent = self.registry.get(_parse_agent(category))
        except UnknownAgentError:
            logger.warning(f"Received restart for unknown agent: {category}")
            return None

        logger.info(f"Agent {agent.id.value} restarting")
        self._system_event(now, f"Performing hard restart on {agent.name}...")
        return lambda completed_at: self.complete_agent_restart(agent.id, completed_at)

    def complete_agent_restart(self, category: AgentType, now: int) -> LogEvent:
        """Second phase of an agent restart. Emitted whatever the agent's state."""
        agent = self.registry.get(category)
        logger.info(f"Agent {agent.id.value} restart complete")
        return self._system_event(now, f"{agent.name} re-initialized with fresh neural weights.")

    def force_anomaly(self, machine_id: str, now: int) -> bool:
        state_machine = self._lookup(machine_id, "force anomaly")
        if state_machine is None:
            return False
        return state_machine.force_anomaly(now, self.rand) is not None

    def power_off(self, machine_id: str, now: int) -> bool:
        state_machine = self._lookup(machine_id, "power off")
        if state_machine is None:
            return False
        return state_machine.power_off(now) is not None

    def restart_machine(self, machine_id: str, now: int) -> bool:
        state_machine = self._lookup(machine_id, "restart")
        if state_machine is None:
            return False
        state_machine.restart(now)
        return True

    def _lookup(self, machine_id: str, action: str) -> Optional[MachineStateMachine]:
        state_machine = self._machines.get(machine_id)
        if state_machine is None:
            logger.warning(f"Received {action} for unknown machine: {machine_id}")
        return state_machine

    def _system_event(self, now: int, message: str) -> LogEvent:
        return self.log.record(
            SYSTEM_MACHINE_ID,
            GLOBAL_FACTORY_ID,
            EventDraft(kind=LogKind.INFO, message=message),
            now,
        )
