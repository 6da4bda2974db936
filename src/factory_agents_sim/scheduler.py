"""Tick scheduling decoupled from the simulation state.

``ThreadScheduler`` drives ticks from a background thread in real time.
``ManualScheduler`` advances a virtual clock so ticks and delayed callbacks
can be fired deterministically without waiting.
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


class Scheduler(ABC):
    """Fires a tick callback at a fixed period; ticks never overlap."""

    @abstractmethod
    def start(self, period_s: float, on_tick: TickCallback) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> None:
        """Run ``callback`` once after ``delay_s`` seconds."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""

    @property
    @abstractmethod
    def running(self) -> bool:
        ...


class ThreadScheduler(Scheduler):
    """Runs ticks back to back on a single daemon thread."""

    def __init__(self, cancel_pending_on_stop: bool = False):
        self.cancel_pending_on_stop = cancel_pending_on_stop
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._timers: Set[threading.Timer] = set()
        self._timers_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def start(self, period_s: float, on_tick: TickCallback) -> None:
        if self.running:
            raise RuntimeError("Scheduler already running")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._tick_loop, args=(period_s, on_tick), daemon=True
        )
        self._thread.start()
        logger.info(f"Tick loop started (period {period_s:.3f}s)")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None

        if self.cancel_pending_on_stop:
            with self._timers_lock:
                for timer in self._timers:
                    timer.cancel()
                self._timers.clear()
        logger.info("Tick loop stopped")

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> None:
        timer: Optional[threading.Timer] = None

        def fire() -> None:
            with self._timers_lock:
                self._timers.discard(timer)
            try:
                callback()
            except Exception:
                logger.exception("Delayed callback failed")

        timer = threading.Timer(delay_s, fire)
        timer.daemon = True
        with self._timers_lock:
            self._timers.add(timer)
        timer.start()

    def _tick_loop(self, period_s: float, on_tick: TickCallback) -> None:
        """Wait one period, tick, repeat. A slow tick delays the next one."""
        deadline = time.monotonic() + period_s
        while not self._stop_event.wait(max(0.0, deadline - time.monotonic())):
            try:
                on_tick()
            except Exception as e:
                logger.error(f"Error in tick loop: {e}")
            deadline = max(deadline + period_s, time.monotonic())


class ManualScheduler(Scheduler):
    """Virtual-time scheduler; nothing happens until ``advance`` is called."""

    def __init__(self, start_ms: int = 0):
        self._now_ms = start_ms
        self._period_ms: Optional[int] = None
        self._on_tick: Optional[TickCallback] = None
        self._next_tick_ms: Optional[int] = None
        self._pending: List[Tuple[int, int, Callable[[], None]]] = []
        self._seq = itertools.count()

    @property
    def running(self) -> bool:
        return self._on_tick is not None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def now_ms(self) -> int:
        return self._now_ms

    def start(self, period_s: float, on_tick: TickCallback) -> None:
        if self.running:
            raise RuntimeError("Scheduler already running")
        self._period_ms = int(round(period_s * 1000))
        if self._period_ms <= 0:
            raise ValueError("Tick period must be positive")
        self._on_tick = on_tick
        self._next_tick_ms = self._now_ms + self._period_ms

    def stop(self) -> None:
        self._on_tick = None
        self._next_tick_ms = None

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> None:
        due = self._now_ms + int(round(delay_s * 1000))
        heapq.heappush(self._pending, (due, next(self._seq), callback))

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing everything due in order.

        Delayed callbacks due at the same instant as a tick run first.
        Returns the number of ticks fired.
        """
        target = self._now_ms + int(round(seconds * 1000))
        ticks = 0
        while True:
            next_call = self._pending[0][0] if self._pending else None
            next_tick = self._next_tick_ms if self._on_tick else None

            candidates = [t for t in (next_call, next_tick) if t is not None and t <= target]
            if not candidates:
                break
            due = min(candidates)
            self._now_ms = due

            if next_call is not None and next_call == due:
                _, _, callback = heapq.heappop(self._pending)
                callback()
                continue

            self._next_tick_ms = due + self._period_ms
            self._on_tick()
            ticks += 1

        self._now_ms = target
        return ticks

    def run_ticks(self, count: int) -> int:
        """Advance by exactly ``count`` tick periods."""
        if not self._period_ms:
            raise RuntimeError("Scheduler not started")
        return self.advance(count * self._period_ms / 1000.0)
