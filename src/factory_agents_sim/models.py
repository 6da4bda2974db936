"""Data model for machines, factories, agents and log events."""

import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional

from .config import Thresholds


class MachineStatus(Enum):
    """Machine operating status."""

    NORMAL = "NORMAL"
    CRITICAL = "CRITICAL"
    OFFLINE = "OFFLINE"  # Only left through an operator restart


class AgentType(Enum):
    """Agent categories. Exactly one agent exists per category."""

    THERMAL = "THERMAL"
    KINETIC = "KINETIC"
    ENERGY = "ENERGY"


class LogKind(Enum):
    """Event log entry kinds."""

    INFO = "INFO"
    WARNING = "WARNING"
    ACTION = "ACTION"
    RECOVERY = "RECOVERY"


@dataclass(frozen=True)
class SensorReading:
    """One sample of a machine's sensors. Timestamp in epoch milliseconds."""

    temperature: float
    vibration: float
    power_usage: float
    timestamp: int

    def rounded(self) -> "SensorReading":
        return SensorReading(
            temperature=round(self.temperature, 2),
            vibration=round(self.vibration, 2),
            power_usage=round(self.power_usage, 2),
            timestamp=self.timestamp,
        )

    def is_finite(self) -> bool:
        return all(
            math.isfinite(v) for v in (self.temperature, self.vibration, self.power_usage)
        )

    def with_timestamp(self, timestamp: int) -> "SensorReading":
        return SensorReading(self.temperature, self.vibration, self.power_usage, timestamp)

    def snapshot(self) -> Dict[str, float]:
        """Compact form attached to log events."""
        return {"t": self.temperature, "v": self.vibration, "p": self.power_usage}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "vibration": self.vibration,
            "power_usage": self.power_usage,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class BreachFlags:
    """Which agent categories a reading needs."""

    thermal: bool = False
    kinetic: bool = False
    energy: bool = False

    @classmethod
    def evaluate(cls, reading: SensorReading, thresholds: Thresholds) -> "BreachFlags":
        return cls(
            thermal=reading.temperature > thresholds.temperature,
            kinetic=reading.vibration > thresholds.vibration,
            energy=reading.power_usage > thresholds.power_usage,
        )

    def any(self) -> bool:
        return self.thermal or self.kinetic or self.energy

    def needed(self) -> List[AgentType]:
        """Agent categories required to clear this breach."""
        needed = []
        if self.thermal:
            needed.append(AgentType.THERMAL)
        if self.kinetic:
            needed.append(AgentType.KINETIC)
        if self.energy:
            needed.append(AgentType.ENERGY)
        return needed


@dataclass
class Machine:
    """Runtime state for one machine.

    ``critical_at`` is set if and only if ``status`` is CRITICAL. ``history``
    is a FIFO bounded by the configured history limit.
    """

    id: str
    name: str
    factory_id: str
    current_reading: SensorReading
    status: MachineStatus = MachineStatus.NORMAL
    history: Deque[SensorReading] = field(default_factory=lambda: deque(maxlen=20))
    critical_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "factory_id": self.factory_id,
            "status": self.status.value,
            "current_reading": self.current_reading.to_dict(),
            "history": [r.to_dict() for r in self.history],
            "critical_at": self.critical_at,
        }


@dataclass
class Factory:
    """A factory and the machines it owns exclusively."""

    id: str
    name: str
    location: str
    machines: List[Machine] = field(default_factory=list)

    def critical_machines(self) -> List[Machine]:
        return [m for m in self.machines if m.status == MachineStatus.CRITICAL]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "machines": [m.to_dict() for m in self.machines],
        }


@dataclass
class Agent:
    """An autonomous recovery agent."""

    id: AgentType
    name: str
    description: str
    is_active: bool = True
    load: int = 0  # Percentage

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "load": self.load,
        }


@dataclass(frozen=True)
class LogEvent:
    """Immutable event log entry."""

    id: str
    timestamp: str  # Display time, HH:MM:SS
    machine_id: str
    factory_id: str
    kind: LogKind
    message: str
    agent_id: Optional[AgentType] = None
    reasoning: Optional[str] = None
    sensor_snapshot: Optional[Mapping[str, float]] = None
    created_ms: int = 0

    def __post_init__(self):
        if self.sensor_snapshot is not None:
            object.__setattr__(
                self, "sensor_snapshot", MappingProxyType(dict(self.sensor_snapshot))
            )

    @property
    def is_anomaly(self) -> bool:
        return self.kind in (LogKind.ACTION, LogKind.WARNING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "machine_id": self.machine_id,
            "factory_id": self.factory_id,
            "kind": self.kind.value,
            "message": self.message,
            "agent_id": self.agent_id.value if self.agent_id else None,
            "reasoning": self.reasoning,
            "sensor_snapshot": dict(self.sensor_snapshot) if self.sensor_snapshot else None,
            "created_ms": self.created_ms,
        }


@dataclass(frozen=True)
class EventDraft:
    """Log event content before it is stamped with an id and a time."""

    kind: LogKind
    message: str
    agent_id: Optional[AgentType] = None
    reasoning: Optional[str] = None
    sensor_snapshot: Optional[Dict[str, float]] = None
