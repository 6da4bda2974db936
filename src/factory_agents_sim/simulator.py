"""Main simulator orchestrating state, scheduling and publication.

The ``Simulator`` is the single writer of a ``SimulationState``: scheduled
ticks, operator commands and delayed completions all run under one lock, so
a command never observes or produces a half-applied tick.

Per tick:
- every machine in every factory advances once
- agent loads are refreshed
- the new fleet state is handed to the publisher, if one is attached
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .models import LogEvent
from .randomness import RandomSource
from .scheduler import Scheduler, ThreadScheduler
from .state import SimulationState

logger = logging.getLogger(__name__)


class Simulator:
    """Runs a SimulationState on a scheduler and serializes all access to it."""

    def __init__(
        self,
        config: Optional[Config] = None,
        scheduler: Optional[Scheduler] = None,
        rand: Optional[RandomSource] = None,
        publisher: Optional[Any] = None,
    ):
        self.config = (config or Config.default()).validate()
        self._scheduler = scheduler or ThreadScheduler()
        self._lock = threading.RLock()
        self._state = SimulationState(self.config, now=self._scheduler.now_ms(), rand=rand)

        # Optional transport (e.g. MQTTBridge): connect/disconnect/publish_state/publish_event
        self._publisher = publisher
        if publisher is not None:
            self._state.log.add_listener(self._on_log_event)
            publisher.on_command = self.handle_command

    @property
    def state(self) -> SimulationState:
        return self._state

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self, dry_run: bool = False) -> bool:
        """Start the tick loop (and the publisher connection, if any)."""
        if self._publisher is not None:
            if not self._publisher.connect(dry_run=dry_run):
                logger.error("Failed to connect publisher")
                return False
            self._publish_state()

        period_s = self.config.simulation.tick_interval_ms / 1000.0
        self._scheduler.start(period_s, self.tick)
        logger.info(f"Simulator started ({self.config.machine_count} machines, tick {period_s:.1f}s)")
        return True

    def stop(self) -> None:
        """Stop the tick loop. Pending delayed completions are not cancelled."""
        self._scheduler.stop()
        if self._publisher is not None:
            self._publisher.disconnect()
        logger.info("Simulator stopped")

    def tick(self) -> List[LogEvent]:
        """Execute one simulation tick."""
        with self._lock:
            events = self._state.apply_tick(self._scheduler.now_ms())
            self._publish_state()
        return events

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.snapshot()

    def agents(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [a.to_dict() for a in self._state.registry.agents()]

    def logs(self) -> List[Dict[str, Any]]:
        """Event log, newest first."""
        with self._lock:
            return [e.to_dict() for e in self._state.log.entries()]

    def fleet_summary(self) -> Dict[str, int]:
        with self._lock:
            return self._state.fleet_summary()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def toggle_agent(self, category: Any) -> bool:
        return self._command(lambda now: self._state.toggle_agent(category, now))

    def restart_agent(self, category: Any) -> bool:
        """Log the restart now and its completion after the restart delay."""
        with self._lock:
            completion = self._state.restart_agent(category, self._scheduler.now_ms())
            if completion is None:
                return False

        delay_s = self.config.simulation.agent_restart_delay_ms / 1000.0
        self._scheduler.call_later(delay_s, lambda: self._run_deferred(completion))
        return True

    def force_anomaly(self, machine_id: str) -> bool:
        return self._command(lambda now: self._state.force_anomaly(machine_id, now))

    def power_off(self, machine_id: str) -> bool:
        return self._command(lambda now: self._state.power_off(machine_id, now))

    def restart_machine(self, machine_id: str) -> bool:
        return self._command(lambda now: self._state.restart_machine(machine_id, now))

    def handle_command(self, target: str, target_id: str, action: str) -> bool:
        """Dispatch a command received from a transport."""
        handlers: Dict[tuple, Callable[[str], bool]] = {
            ("agents", "toggle"): self.toggle_agent,
            ("agents", "restart"): self.restart_agent,
            ("machines", "force_anomaly"): self.force_anomaly,
            ("machines", "power_off"): self.power_off,
            ("machines", "restart"): self.restart_machine,
        }
        handler = handlers.get((target, action))
        if handler is None:
            logger.warning(f"Unknown command: {target}/{target_id}/{action}")
            return False
        return handler(target_id)

    def _command(self, apply: Callable[[int], bool]) -> bool:
        with self._lock:
            applied = apply(self._scheduler.now_ms())
            if applied:
                self._publish_state()
            return applied

    def _run_deferred(self, completion: Callable[[int], LogEvent]) -> None:
        with self._lock:
            completion(self._scheduler.now_ms())

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _publish_state(self) -> None:
        if self._publisher is not None:
            self._publisher.publish_state(self._state.snapshot())

    def _on_log_event(self, event: LogEvent) -> None:
        self._publisher.publish_event(event.to_dict())
