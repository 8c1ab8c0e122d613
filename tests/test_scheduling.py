"""Tests for the schedulers and the coalescing throttle."""

import asyncio

import pytest

from inknote.scheduling import AsyncioScheduler, ManualScheduler, Throttle


class TestManualScheduler:
    """Tests for the explicit-clock scheduler."""

    def test_runs_when_due(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.schedule("a", 0.5, lambda: calls.append("a"))
        assert scheduler.advance(0.4) == 0
        assert calls == []
        assert scheduler.advance(0.1) == 1
        assert calls == ["a"]
        assert not scheduler.pending("a")

    def test_same_key_replaces_pending_timer(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.schedule("a", 0.1, lambda: calls.append(1))
        scheduler.schedule("a", 0.3, lambda: calls.append(2))
        scheduler.advance(0.2)
        assert calls == []
        scheduler.advance(0.1)
        assert calls == [2]

    def test_cancel(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.schedule("a", 0.1, lambda: calls.append(1))
        assert scheduler.cancel("a") is True
        assert scheduler.cancel("a") is False
        scheduler.advance(1)
        assert calls == []

    def test_runs_in_due_order_and_tracks_clock(self):
        scheduler = ManualScheduler(start=10.0)
        seen = []
        scheduler.schedule("late", 0.3, lambda: seen.append(("late", scheduler.now())))
        scheduler.schedule("early", 0.1, lambda: seen.append(("early", scheduler.now())))
        scheduler.advance(1.0)
        assert seen == [("early", pytest.approx(10.1)), ("late", pytest.approx(10.3))]
        assert scheduler.now() == pytest.approx(11.0)

    def test_flush_runs_everything(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.schedule("a", 5, lambda: calls.append("a"))
        scheduler.schedule("b", 1, lambda: calls.append("b"))
        assert scheduler.flush() == 2
        assert calls == ["b", "a"]


class TestTrailingThrottle:
    """A throttle with the leading edge suppressed (render window)."""

    def test_burst_collapses_into_one_trailing_run(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.016)
        calls = []
        for i in range(5):
            throttle(lambda i=i: calls.append(i))
            scheduler.advance(0.002)
        assert calls == []
        scheduler.advance(0.016)
        assert calls == [4]

    def test_at_most_one_run_per_window(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.016)
        runs = []
        for _ in range(50):
            throttle(lambda: runs.append(scheduler.now()))
            scheduler.advance(0.001)
        scheduler.advance(0.1)
        gaps = [b - a for a, b in zip(runs, runs[1:])]
        assert len(runs) >= 3
        assert all(gap >= 0.016 - 1e-9 for gap in gaps)

    def test_flush_and_pending(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.016)
        calls = []
        throttle(lambda: calls.append(1))
        assert throttle.pending()
        assert throttle.flush() == 1
        assert calls == [1]
        assert not throttle.pending()
        scheduler.advance(1)
        assert calls == [1]


class TestLeadingThrottle:
    """A keyed throttle with the leading edge enabled (persist window)."""

    def test_first_call_runs_immediately(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.5, leading=True)
        calls = []
        throttle(lambda: calls.append(1), key="n1")
        assert calls == [1]

    def test_trailing_call_carries_newest_payload(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.5, leading=True)
        calls = []
        throttle(lambda: calls.append("a"), key="n1")
        scheduler.advance(0.1)
        throttle(lambda: calls.append("b"), key="n1")
        throttle(lambda: calls.append("c"), key="n1")
        scheduler.advance(0.3)
        assert calls == ["a"]
        scheduler.advance(0.2)
        assert calls == ["a", "c"]

    def test_keys_are_independent(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.5, leading=True)
        calls = []
        throttle(lambda: calls.append("n1"), key="n1")
        throttle(lambda: calls.append("n2"), key="n2")
        assert calls == ["n1", "n2"]

    def test_cancel_drops_pending_call(self):
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.5, leading=True)
        calls = []
        throttle(lambda: calls.append(1), key="n1")
        throttle(lambda: calls.append(2), key="n1")
        throttle.cancel("n1")
        scheduler.advance(1)
        assert calls == [1]
        assert throttle.tracked() == 0

    def test_idle_keys_are_forgotten(self):
        """Keys whose interval has passed are not kept around."""
        scheduler = ManualScheduler()
        throttle = Throttle(scheduler, 0.5, leading=True)
        for note_id in ("n1", "n2", "n3"):
            throttle(lambda: None, key=note_id)
        assert throttle.tracked() == 3
        scheduler.advance(1)
        calls = []
        throttle(lambda: calls.append("n4"), key="n4")
        assert calls == ["n4"]
        assert throttle.tracked() == 1

    def test_two_throttles_do_not_share_timers(self):
        scheduler = ManualScheduler()
        render = Throttle(scheduler, 0.016, name="render")
        persist = Throttle(scheduler, 0.5, leading=True, name="persist")
        calls = []
        persist(lambda: calls.append("persist-1"))
        persist(lambda: calls.append("persist-2"))
        render(lambda: calls.append("render"))
        scheduler.advance(0.016)
        assert calls == ["persist-1", "render"]
        scheduler.advance(0.5)
        assert calls == ["persist-1", "render", "persist-2"]


class TestAsyncioScheduler:
    """Tests for the event-loop scheduler."""

    def test_call_later_and_replace(self):
        async def scenario():
            scheduler = AsyncioScheduler()
            calls = []
            scheduler.schedule("a", 0.01, lambda: calls.append(1))
            scheduler.schedule("a", 0.02, lambda: calls.append(2))
            assert scheduler.pending("a")
            await asyncio.sleep(0.05)
            return calls, scheduler.pending("a")

        calls, pending = asyncio.run(scenario())
        assert calls == [2]
        assert pending is False

    def test_flush_runs_pending_callbacks(self):
        async def scenario():
            scheduler = AsyncioScheduler()
            calls = []
            scheduler.schedule("a", 10, lambda: calls.append("a"))
            ran = scheduler.flush()
            await asyncio.sleep(0)
            return ran, calls, scheduler.pending("a")

        ran, calls, pending = asyncio.run(scenario())
        assert ran == 1
        assert calls == ["a"]
        assert pending is False

    def test_requires_running_loop(self):
        with pytest.raises(RuntimeError):
            AsyncioScheduler()
