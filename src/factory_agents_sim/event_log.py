"""Append-only, capacity-bounded event log (newest first)."""

import logging
import uuid
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterator, List, Optional

from .models import EventDraft, LogEvent

logger = logging.getLogger(__name__)

SYSTEM_MACHINE_ID = "SYSTEM"
GLOBAL_FACTORY_ID = "GLOBAL"
GLOBAL_GROUP = "Global System"


def display_time(now_ms: int) -> str:
    """Local wall-clock time for a millisecond timestamp."""
    return datetime.fromtimestamp(now_ms / 1000.0).strftime("%H:%M:%S")


class EventLog:
    """Single log of fleet events, evicting the oldest once full."""

    def __init__(self, capacity: int = 100):
        self.capacity = capacity
        # Left end holds the newest entry
        self._entries: Deque[LogEvent] = deque(maxlen=capacity)
        self._listeners: List[Callable[[LogEvent], None]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEvent]:
        return iter(list(self._entries))

    def append(self, event: LogEvent) -> LogEvent:
        """Store ``event`` and notify listeners.

        A failing listener is logged and skipped; the entry stays recorded.
        """
        self._entries.appendleft(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Log listener failed for event {event.id}")
        return event

    def add_listener(self, listener: Callable[[LogEvent], None]) -> None:
        """Call ``listener`` with every event appended from now on."""
        self._listeners.append(listener)

    def record(
        self,
        machine_id: str,
        factory_id: str,
        draft: EventDraft,
        now_ms: int,
    ) -> LogEvent:
        """Stamp a draft with an id and time, then append it."""
        event = LogEvent(
            id=uuid.uuid4().hex[:9],
            timestamp=display_time(now_ms),
            machine_id=machine_id,
            factory_id=factory_id,
            kind=draft.kind,
            message=draft.message,
            agent_id=draft.agent_id,
            reasoning=draft.reasoning,
            sensor_snapshot=draft.sensor_snapshot,
            created_ms=now_ms,
        )
        return self.append(event)

    def entries(self) -> List[LogEvent]:
        """All retained entries, newest first."""
        return list(self._entries)

    def latest(self) -> Optional[LogEvent]:
        return self._entries[0] if self._entries else None

    def for_machine(self, machine_id: str) -> List[LogEvent]:
        return [e for e in self._entries if e.machine_id == machine_id]

    def for_factory(self, factory_id: str) -> List[LogEvent]:
        return [e for e in self._entries if e.factory_id == factory_id]

    def grouped_by_factory(self) -> Dict[str, List[LogEvent]]:
        """Entries grouped by factory id, sorted, with the global group last."""
        groups: Dict[str, List[LogEvent]] = {}
        for event in self._entries:
            key = event.factory_id
            if not key or key == GLOBAL_FACTORY_ID:
                key = GLOBAL_GROUP
            groups.setdefault(key, []).append(event)

        ordered = sorted(k for k in groups if k != GLOBAL_GROUP)
        if GLOBAL_GROUP in groups:
            ordered.append(GLOBAL_GROUP)
        return {k: groups[k] for k in ordered}

    def recent_anomalies(self, limit: int = 5) -> List[LogEvent]:
        """Most recent ACTION and WARNING entries across the fleet."""
        return [e for e in self._entries if e.is_anomaly][:limit]

    def latest_anomaly_for(self, machine_id: str) -> Optional[LogEvent]:
        for event in self._entries:
            if event.machine_id == machine_id and event.is_anomaly:
                return event
        return None
