"""Tests for the tick schedulers."""

import threading
import time

import pytest

from factory_agents_sim.scheduler import ManualScheduler, ThreadScheduler


class TestManualScheduler:
    """Tests for the virtual-time scheduler."""

    @pytest.fixture
    def scheduler(self):
        return ManualScheduler(start_ms=1000)

    def test_nothing_fires_before_start(self, scheduler):
        assert scheduler.advance(10) == 0
        assert scheduler.now_ms() == 11000

    def test_ticks_fire_at_period(self, scheduler):
        times = []
        scheduler.start(2.0, lambda: times.append(scheduler.now_ms()))

        fired = scheduler.advance(5.0)

        assert fired == 2
        assert times == [3000, 5000]
        assert scheduler.now_ms() == 6000

    def test_run_ticks(self, scheduler):
        count = []
        scheduler.start(2.0, lambda: count.append(1))

        scheduler.run_ticks(4)

        assert len(count) == 4
        assert scheduler.now_ms() == 9000

    def test_call_later_interleaves_with_ticks(self, scheduler):
        order = []
        scheduler.start(2.0, lambda: order.append(("tick", scheduler.now_ms())))
        scheduler.call_later(1.0, lambda: order.append(("later", scheduler.now_ms())))
        scheduler.call_later(2.0, lambda: order.append(("same", scheduler.now_ms())))

        scheduler.advance(2.0)

        assert order == [("later", 2000), ("same", 3000), ("tick", 3000)]

    def test_stop_keeps_pending_callbacks(self, scheduler):
        fired = []
        scheduler.start(2.0, lambda: fired.append("tick"))
        scheduler.call_later(1.0, lambda: fired.append("later"))
        scheduler.stop()

        scheduler.advance(5.0)

        assert fired == ["later"]
        assert scheduler.pending == 0

    def test_double_start_rejected(self, scheduler):
        scheduler.start(1.0, lambda: None)

        with pytest.raises(RuntimeError):
            scheduler.start(1.0, lambda: None)

    def test_run_ticks_requires_start(self, scheduler):
        with pytest.raises(RuntimeError):
            scheduler.run_ticks(1)


class TestThreadScheduler:
    """Tests for the real-time scheduler."""

    def test_ticks_do_not_overlap(self):
        scheduler = ThreadScheduler()
        active = []
        overlaps = []
        ticks = []
        done = threading.Event()

        def on_tick():
            if active:
                overlaps.append(True)
            active.append(True)
            time.sleep(0.02)  # Longer than the period
            active.pop()
            ticks.append(1)
            if len(ticks) >= 3:
                done.set()

        scheduler.start(0.005, on_tick)
        assert done.wait(timeout=5)
        scheduler.stop()

        assert overlaps == []
        assert scheduler.running is False

    def test_failing_tick_does_not_stop_loop(self):
        scheduler = ThreadScheduler()
        calls = []
        done = threading.Event()

        def on_tick():
            calls.append(1)
            if len(calls) >= 2:
                done.set()
            raise RuntimeError("tick failed")

        scheduler.start(0.005, on_tick)
        assert done.wait(timeout=5)
        scheduler.stop()

    def test_call_later_fires_after_stop(self):
        scheduler = ThreadScheduler()
        fired = threading.Event()
        scheduler.start(10.0, lambda: None)

        scheduler.call_later(0.05, fired.set)
        scheduler.stop()

        assert fired.wait(timeout=5)

    def test_cancel_pending_on_stop(self):
        scheduler = ThreadScheduler(cancel_pending_on_stop=True)
        fired = threading.Event()

        scheduler.call_later(0.2, fired.set)
        scheduler.stop()

        assert not fired.wait(timeout=0.4)

    def test_now_ms_is_wall_clock(self):
        before = int(time.time() * 1000)
        now = ThreadScheduler().now_ms()

        assert before <= now <= before + 1000
