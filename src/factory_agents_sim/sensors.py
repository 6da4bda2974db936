"""Sensor model: per-tick evolution of a machine's readings.

The current status selects the branch:

- **OFFLINE**: readings frozen, only the timestamp advances.
- **CRITICAL**: if every agent category the current breach needs is active,
  readings ease toward their floors and the machine recovers once it has been
  critical for the recovery duration. Otherwise readings drift upward and the
  recovery timer is not evaluated.
- **NORMAL**: readings drift inside their operating envelope. A threshold
  breach or a spontaneous trigger turns the machine critical.

The model only proposes the next state as a ``SensorStep``; committing it is
the machine state machine's job.
"""

from dataclasses import dataclass
from typing import Optional

from .agents import AgentRegistry
from .config import Thresholds
from .errors import NonFiniteReadingError, SimulationError
from .models import AgentType, BreachFlags, Machine, MachineStatus, SensorReading
from .randomness import RandomSource, drift, pick

# Startup reading and recovery floors
BASELINE_TEMPERATURE = 45.0
BASELINE_VIBRATION = 30.0
BASELINE_POWER_USAGE = 50.0

# Recovery easing per tick
TEMPERATURE_EASE = 5.0
VIBRATION_EASE = 4.0
POWER_USAGE_EASE = 3.0

# Operating envelopes while NORMAL: (min, max)
TEMPERATURE_RANGE = (20.0, 100.0)
VIBRATION_RANGE = (10.0, 100.0)
POWER_USAGE_RANGE = (10.0, 100.0)

# Spontaneous anomaly spike: base + rand * spread
SPIKE_TEMPERATURE = (85.0, 10.0)
SPIKE_VIBRATION = (82.0, 8.0)

ANOMALY_REASONS = [
    "Lubricant viscosity breakdown detected in primary bearing.",
    "Thermal gradient imbalance in secondary heat exchanger.",
    "Micro-fissure detected in hydraulic pressure assembly.",
    "Unsynchronized harmonic oscillation in rotary coupling.",
    "Power supply voltage fluctuation exceeding grid tolerances.",
    "Sensor calibration drift due to extreme environment flux.",
    "Magnetic interference affecting solenoid timing.",
    "Partial blockage in high-pressure coolant line.",
]

CORRECTION_REASONS = [
    "Engaged emergency redundant cooling reservoir.",
    "Active harmonic dampening sequence successfully stabilized flux.",
    "Rerouted power through secondary capacitor banks.",
    "Automated nano-sealant injection completed for micro-fissure.",
    "Neural recalibration of timing sensors finalized.",
    "High-pressure bypass valve cleared blockage autonomously.",
    "Inertia dampeners activated to counter kinetic instability.",
    "Voltage regulation bypass engaged for grid stabilization.",
]


def baseline_reading(timestamp: int) -> SensorReading:
    return SensorReading(
        temperature=BASELINE_TEMPERATURE,
        vibration=BASELINE_VIBRATION,
        power_usage=BASELINE_POWER_USAGE,
        timestamp=timestamp,
    )


def _clamp(value: float, bounds: tuple) -> float:
    low, high = bounds
    return min(high, max(low, value))


@dataclass(frozen=True)
class SensorStep:
    """Proposed next state for one machine."""

    reading: SensorReading
    status: MachineStatus
    critical_at: Optional[int]

    # NORMAL -> CRITICAL
    triggered: bool = False
    spontaneous: bool = False
    primary_agent: Optional[AgentType] = None
    anomaly_reason: Optional[str] = None

    # CRITICAL -> NORMAL
    recovered: bool = False
    correction_reason: Optional[str] = None

    # CRITICAL with an uncovered category
    blocked: bool = False

    # Reading appended to history when it differs from ``reading``
    history_reading: Optional[SensorReading] = None


class SensorModel:
    """Computes the next reading and status of a machine."""

    def __init__(
        self,
        thresholds: Optional[Thresholds] = None,
        recovery_duration_ms: int = 10000,
        anomaly_probability: float = 0.015,
    ):
        self.thresholds = thresholds or Thresholds()
        self.recovery_duration_ms = recovery_duration_ms
        self.anomaly_probability = anomaly_probability

    def breaches(self, reading: SensorReading) -> BreachFlags:
        return BreachFlags.evaluate(reading, self.thresholds)

    def primary_agent(self, reading: SensorReading) -> AgentType:
        """Responsible agent: thermal by default, a later breach overrides.

        Power beats vibration beats the thermal default.
        """
        flags = self.breaches(reading)
        primary = AgentType.THERMAL
        if flags.kinetic:
            primary = AgentType.KINETIC
        if flags.energy:
            primary = AgentType.ENERGY
        return primary

    def step(
        self,
        machine: Machine,
        now: int,
        registry: AgentRegistry,
        rand: RandomSource,
    ) -> SensorStep:
        """Propose the next state of ``machine`` at time ``now`` (ms)."""
        if machine.status == MachineStatus.OFFLINE:
            return SensorStep(
                reading=machine.current_reading.with_timestamp(now),
                status=MachineStatus.OFFLINE,
                critical_at=None,
                history_reading=machine.current_reading,
            )

        if machine.status == MachineStatus.CRITICAL:
            if machine.critical_at is None:
                raise SimulationError(f"Machine {machine.id} is CRITICAL without critical_at")
            return self._step_critical(machine, now, registry, rand)

        return self._step_normal(machine, now, rand)

    def _step_critical(
        self,
        machine: Machine,
        now: int,
        registry: AgentRegistry,
        rand: RandomSource,
    ) -> SensorStep:
        current = machine.current_reading
        flags = self.breaches(current)

        if not registry.coverage_satisfied(flags):
            # Blocked: the anomaly may only worsen, timer paused
            reading = SensorReading(
                temperature=current.temperature + max(0.0, drift(rand)),
                vibration=current.vibration + max(0.0, drift(rand)),
                power_usage=current.power_usage + max(0.0, drift(rand)),
                timestamp=now,
            )
            return SensorStep(
                reading=self._commit(reading),
                status=MachineStatus.CRITICAL,
                critical_at=machine.critical_at,
                blocked=True,
            )

        reading = SensorReading(
            temperature=max(BASELINE_TEMPERATURE, current.temperature - TEMPERATURE_EASE),
            vibration=max(BASELINE_VIBRATION, current.vibration - VIBRATION_EASE),
            power_usage=max(BASELINE_POWER_USAGE, current.power_usage - POWER_USAGE_EASE),
            timestamp=now,
        )

        if now - machine.critical_at >= self.recovery_duration_ms:
            return SensorStep(
                reading=self._commit(reading),
                status=MachineStatus.NORMAL,
                critical_at=None,
                recovered=True,
                correction_reason=pick(rand, CORRECTION_REASONS),
            )

        return SensorStep(
            reading=self._commit(reading),
            status=MachineStatus.CRITICAL,
            critical_at=machine.critical_at,
        )

    def _step_normal(self, machine: Machine, now: int, rand: RandomSource) -> SensorStep:
        current = machine.current_reading
        temperature = _clamp(current.temperature + drift(rand), TEMPERATURE_RANGE)
        vibration = _clamp(current.vibration + drift(rand), VIBRATION_RANGE)
        power_usage = _clamp(current.power_usage + drift(rand), POWER_USAGE_RANGE)

        random_trigger = rand.random() < self.anomaly_probability
        threshold_breach = BreachFlags(
            thermal=temperature > self.thresholds.temperature,
            kinetic=vibration > self.thresholds.vibration,
            energy=power_usage > self.thresholds.power_usage,
        ).any()

        if not (random_trigger or threshold_breach):
            reading = SensorReading(temperature, vibration, power_usage, now)
            return SensorStep(
                reading=self._commit(reading),
                status=MachineStatus.NORMAL,
                critical_at=None,
            )

        spontaneous = random_trigger and not threshold_breach
        if spontaneous:
            temperature = SPIKE_TEMPERATURE[0] + rand.random() * SPIKE_TEMPERATURE[1]
            vibration = SPIKE_VIBRATION[0] + rand.random() * SPIKE_VIBRATION[1]

        reason = pick(rand, ANOMALY_REASONS)
        raw = SensorReading(temperature, vibration, power_usage, now)
        return SensorStep(
            reading=self._commit(raw),
            status=MachineStatus.CRITICAL,
            critical_at=now,
            triggered=True,
            spontaneous=spontaneous,
            primary_agent=self.primary_agent(raw),
            anomaly_reason=reason,
        )

    @staticmethod
    def _commit(reading: SensorReading) -> SensorReading:
        """Round to 2 decimals, rejecting NaN and infinity."""
        if not reading.is_finite():
            raise NonFiniteReadingError(f"Non-finite sensor reading: {reading}")
        return reading.rounded()
