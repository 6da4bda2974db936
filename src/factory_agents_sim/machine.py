"""Per-machine state machine.

    NORMAL --breach/trigger--> CRITICAL --recovered--> NORMAL
    any --power_off--> OFFLINE --restart--> NORMAL

OFFLINE is never left by the tick logic, only by an operator restart.
"""

import logging
from typing import Optional

from .agents import AgentRegistry
from .event_log import EventLog
from .models import EventDraft, LogEvent, LogKind, Machine, MachineStatus, SensorReading
from .randomness import RandomSource, pick
from .sensors import ANOMALY_REASONS, SensorModel, baseline_reading

logger = logging.getLogger(__name__)

FORCED_TEMPERATURE = 95.0
FORCED_VIBRATION = 88.0


class MachineStateMachine:
    """Owns one machine's status, reading and history."""

    def __init__(
        self,
        machine: Machine,
        factory_name: str,
        sensor_model: SensorModel,
        log: EventLog,
    ):
        self.machine = machine
        self.factory_name = factory_name
        self.sensor_model = sensor_model
        self.log = log

    @property
    def id(self) -> str:
        return self.machine.id

    @property
    def status(self) -> MachineStatus:
        return self.machine.status

    def advance(self, now: int, registry: AgentRegistry, rand: RandomSource) -> Optional[LogEvent]:
        """Run one tick. Returns the log event emitted, if any."""
        step = self.sensor_model.step(self.machine, now, registry, rand)
        self._commit(
            step.reading,
            step.status,
            step.critical_at,
            record=True,
            history_reading=step.history_reading,
        )

        if step.triggered:
            logger.info(
                f"{self.id}: anomaly detected ({'spontaneous' if step.spontaneous else 'threshold'}), "
                f"primary agent {step.primary_agent.value}"
            )
            return self._record(
                now,
                EventDraft(
                    kind=LogKind.ACTION,
                    message=f"Anomaly detected at {self.factory_name}! Recovery requires active AI agents.",
                    agent_id=step.primary_agent,
                    reasoning=f"XAI Analysis: {step.anomaly_reason}",
                    sensor_snapshot=step.reading.snapshot(),
                ),
            )

        if step.recovered:
            logger.info(f"{self.id}: recovered to NORMAL")
            return self._record(
                now,
                EventDraft(
                    kind=LogKind.RECOVERY,
                    message=f"Unit stabilized at {self.factory_name}.",
                    reasoning=f"AI Reasoning: {step.correction_reason}",
                ),
            )

        if step.blocked:
            logger.debug(f"{self.id}: recovery blocked, required agent inactive")
        return None

    def force_anomaly(self, now: int, rand: RandomSource) -> Optional[LogEvent]:
        """Inject a severe anomaly. Only allowed from NORMAL."""
        if self.machine.status != MachineStatus.NORMAL:
            logger.warning(f"{self.id}: force anomaly rejected in state {self.machine.status.value}")
            return None

        current = self.machine.current_reading
        reading = SensorReading(
            temperature=FORCED_TEMPERATURE,
            vibration=FORCED_VIBRATION,
            power_usage=current.power_usage,
            timestamp=current.timestamp,
        )
        reason = pick(rand, ANOMALY_REASONS)
        self._commit(reading, MachineStatus.CRITICAL, now, record=False)
        logger.info(f"{self.id}: anomaly injected by operator")
        return self._record(
            now,
            EventDraft(
                kind=LogKind.WARNING,
                message="Manual anomaly injection override.",
                reasoning=f"XAI Trace: {reason}",
            ),
        )

    def power_off(self, now: int) -> Optional[LogEvent]:
        """Switch the machine off. Rejected if it is already OFFLINE."""
        if self.machine.status == MachineStatus.OFFLINE:
            logger.warning(f"{self.id}: already OFFLINE")
            return None

        self._commit(self.machine.current_reading, MachineStatus.OFFLINE, None, record=False)
        logger.info(f"{self.id}: powered off")
        return self._record(
            now,
            EventDraft(
                kind=LogKind.INFO,
                message="Manual power-off command executed.",
                reasoning="XAI: Operator-initiated shutdown. Suspended all telemetry.",
            ),
        )

    def restart(self, now: int) -> LogEvent:
        """Hard reset to NORMAL with the baseline reading, from any state."""
        self._commit(baseline_reading(now), MachineStatus.NORMAL, None, record=True)
        logger.info(f"{self.id}: hard reset")
        return self._record(
            now,
            EventDraft(
                kind=LogKind.RECOVERY,
                message="Hard reset initiated.",
                reasoning="XAI: Resetting hardware buffers and recalibrating sensor baseline.",
            ),
        )

    def _commit(
        self,
        reading: SensorReading,
        status: MachineStatus,
        critical_at: Optional[int],
        record: bool,
        history_reading: Optional[SensorReading] = None,
    ) -> None:
        if (status == MachineStatus.CRITICAL) != (critical_at is not None):
            raise ValueError(f"critical_at must be set exactly when CRITICAL (got {status}, {critical_at})")

        machine = self.machine
        machine.current_reading = reading
        machine.status = status
        machine.critical_at = critical_at
        if record:
            # deque(maxlen) evicts the oldest entry
            machine.history.append(history_reading or reading)

    def _record(self, now: int, draft: EventDraft) -> LogEvent:
        return self.log.record(self.machine.id, self.machine.factory_id, draft, now)
