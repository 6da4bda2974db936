"""Tests for the per-machine state machine and operator commands."""

from collections import deque

import pytest

from factory_agents_sim.agents import AgentRegistry
from factory_agents_sim.event_log import EventLog
from factory_agents_sim.machine import MachineStateMachine
from factory_agents_sim.models import AgentType, LogKind, Machine, MachineStatus, SensorReading
from factory_agents_sim.randomness import ScriptedRandom
from factory_agents_sim.sensors import SensorModel

TICK_MS = 2000


def build(t=45.0, v=30.0, p=50.0, status=MachineStatus.NORMAL, critical_at=None):
    machine = Machine(
        id="F1-M1",
        name="Unit 1",
        factory_id="F1",
        current_reading=SensorReading(t, v, p, 0),
        status=status,
        history=deque(maxlen=20),
        critical_at=critical_at,
    )
    log = EventLog()
    return MachineStateMachine(machine, "Alpha Plant", SensorModel(), log), log


class TestAdvance:
    """Tests for tick advancement."""

    @pytest.fixture
    def registry(self):
        return AgentRegistry()

    def test_quiet_tick_emits_nothing(self, registry):
        sm, log = build()

        event = sm.advance(TICK_MS, registry, ScriptedRandom(fallback=0.5))

        assert event is None
        assert len(log) == 0
        assert sm.status == MachineStatus.NORMAL
        assert list(sm.machine.history) == [SensorReading(45.0, 30.0, 50.0, TICK_MS)]

    def test_temperature_breach_scenario(self, registry):
        sm, log = build(t=82.0)

        event = sm.advance(TICK_MS, registry, ScriptedRandom([0.5, 0.5, 0.5, 0.5, 0.0]))

        assert sm.status == MachineStatus.CRITICAL
        assert sm.machine.critical_at == TICK_MS
        assert len(log) == 1
        assert event.kind == LogKind.ACTION
        assert event.agent_id == AgentType.THERMAL
        assert event.machine_id == "F1-M1"
        assert event.factory_id == "F1"
        assert "Alpha Plant" in event.message
        assert event.reasoning.startswith("XAI Analysis: ")
        assert event.sensor_snapshot == {"t": 82.0, "v": 30.0, "p": 50.0}
        assert event.sensor_snapshot == sm.machine.current_reading.snapshot()

    def test_history_bounded_fifo(self, registry):
        sm, _ = build()
        rand = ScriptedRandom(fallback=0.5)

        for i in range(1, 26):
            sm.advance(i * TICK_MS, registry, rand)

        history = list(sm.machine.history)
        assert len(history) == 20
        assert history[0].timestamp == 6 * TICK_MS
        assert history[-1].timestamp == 25 * TICK_MS

    def test_recovery_emits_exactly_one_entry(self, registry):
        sm, log = build(90.0, 50.0, 50.0, MachineStatus.CRITICAL, critical_at=0)
        rand = ScriptedRandom(fallback=0.5)

        for i in range(1, 11):
            sm.advance(i * TICK_MS, registry, rand)

        recoveries = [e for e in log.entries() if e.kind == LogKind.RECOVERY]
        assert len(recoveries) == 1
        assert recoveries[0].created_ms == 10000
        assert recoveries[0].reasoning.startswith("AI Reasoning: ")
        assert sm.status == MachineStatus.NORMAL
        assert sm.machine.critical_at is None

    def test_blocked_recovery_never_resolves(self, registry):
        registry.set_active(AgentType.THERMAL, False)
        sm, log = build(90.0, 50.0, 50.0, MachineStatus.CRITICAL, critical_at=0)
        rand = ScriptedRandom(fallback=0.9)

        previous = sm.machine.current_reading
        for i in range(1, 51):
            sm.advance(i * TICK_MS, registry, rand)
            current = sm.machine.current_reading
            assert sm.status == MachineStatus.CRITICAL
            assert current.temperature >= previous.temperature
            assert current.vibration >= previous.vibration
            assert current.power_usage >= previous.power_usage
            previous = current

        assert sm.machine.critical_at == 0
        assert len(log) == 0

    def test_offline_is_never_left_by_ticks(self, registry):
        sm, _ = build(status=MachineStatus.OFFLINE)

        for i in range(1, 4):
            sm.advance(i * TICK_MS, registry, ScriptedRandom([0.0] * 10))

        assert sm.status == MachineStatus.OFFLINE
        assert len(sm.machine.history) == 3
        assert sm.machine.current_reading.timestamp == 3 * TICK_MS
        # Each tick records the reading held before its timestamp moved on
        assert [r.timestamp for r in sm.machine.history] == [0, TICK_MS, 2 * TICK_MS]
        assert all(
            (r.temperature, r.vibration, r.power_usage) == (45.0, 30.0, 50.0)
            for r in sm.machine.history
        )


class TestCommands:
    """Tests for operator commands."""

    def test_force_anomaly_from_normal(self):
        sm, log = build(p=61.5)

        event = sm.force_anomaly(5000, ScriptedRandom([0.0]))

        reading = sm.machine.current_reading
        assert sm.status == MachineStatus.CRITICAL
        assert (reading.temperature, reading.vibration, reading.power_usage) == (95.0, 88.0, 61.5)
        assert sm.machine.critical_at == 5000
        assert event.kind == LogKind.WARNING
        assert event.reasoning.startswith("XAI Trace: ")
        assert len(log) == 1

    def test_force_anomaly_rejected_while_critical(self):
        sm, log = build()
        sm.force_anomaly(5000, ScriptedRandom())

        assert sm.force_anomaly(7000, ScriptedRandom()) is None
        assert sm.machine.critical_at == 5000
        assert len(log) == 1

    def test_force_anomaly_rejected_while_offline(self):
        sm, log = build(status=MachineStatus.OFFLINE)

        assert sm.force_anomaly(5000, ScriptedRandom()) is None
        assert sm.status == MachineStatus.OFFLINE
        assert len(log) == 0

    def test_power_off_clears_critical_at(self):
        sm, log = build(90.0, 50.0, 50.0, MachineStatus.CRITICAL, critical_at=0)

        event = sm.power_off(3000)

        assert event.kind == LogKind.INFO
        assert sm.status == MachineStatus.OFFLINE
        assert sm.machine.critical_at is None

    def test_power_off_rejected_when_offline(self):
        sm, log = build()
        sm.power_off(3000)

        assert sm.power_off(4000) is None
        assert len(log) == 1

    def test_power_off_then_restart(self):
        sm, log = build(70.0, 60.0, 55.0)

        sm.power_off(3000)
        sm.restart(4000)

        assert sm.status == MachineStatus.NORMAL
        assert sm.machine.critical_at is None
        assert sm.machine.current_reading == SensorReading(45.0, 30.0, 50.0, 4000)
        assert sm.machine.history[-1] == SensorReading(45.0, 30.0, 50.0, 4000)
        # Newest first
        assert [e.kind for e in log.entries()] == [LogKind.RECOVERY, LogKind.INFO]

    def test_restart_from_critical(self):
        sm, _ = build(95.0, 88.0, 50.0, MachineStatus.CRITICAL, critical_at=0)

        sm.restart(4000)

        assert sm.status == MachineStatus.NORMAL
        assert sm.machine.critical_at is None
