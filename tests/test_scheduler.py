# tests/test_scheduler.py
import threading
import time

import pytest

from net.scheduler import EventScheduler, IOPollError, SchedulerInvariantError, SchedulerWorker
from util import metrics


class FakeTimers:
    def __init__(self, fired=0, next_delay=None):
        self.fired = fired
        self.next_delay = next_delay
        self.polls = 0

    def poll(self):
        self.polls += 1
        return self.fired, self.next_delay


class FakeIO:
    def __init__(self, results=()):
        self.results = list(results)
        self.timeouts = []

    def poll(self, timeout_ms):
        self.timeouts.append(timeout_ms)
        if not self.results:
            return 0
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_io_timeout_follows_next_timer():
    io = FakeIO()
    scheduler = EventScheduler(FakeTimers(next_delay=50), io)
    assert scheduler.run_tick(500) == 0
    assert io.timeouts == [50]


def test_io_timeout_is_bounded_by_max_wait_and_one_second():
    io = FakeIO()
    EventScheduler(FakeTimers(next_delay=None), io).run_tick(500)
    EventScheduler(FakeTimers(next_delay=5000), io).run_tick(2000)
    EventScheduler(FakeTimers(next_delay=None), io).run_tick(3000)
    EventScheduler(FakeTimers(next_delay=0), io).run_tick(500)
    assert io.timeouts == [500, 1000, 1000, 0]


def test_negative_timer_delay_is_fatal():
    io = FakeIO()
    with pytest.raises(SchedulerInvariantError):
        EventScheduler(FakeTimers(next_delay=-1), io).run_tick(500)
    assert io.timeouts == []


def test_default_cap_processes_one_io_event_per_tick():
    io = FakeIO([1, 1, 1])
    scheduler = EventScheduler(FakeTimers(fired=2, next_delay=100), io)
    assert scheduler.run_tick(500) == 3
    assert io.timeouts == [100]


def test_burst_switches_to_zero_timeout_until_idle():
    io = FakeIO([1, 2, 0])
    scheduler = EventScheduler(FakeTimers(next_delay=100), io, max_io_events=10)
    assert scheduler.run_tick(500) == 3
    assert io.timeouts == [100, 0, 0]


def test_burst_stops_at_cap():
    io = FakeIO([2, 2, 2, 2])
    scheduler = EventScheduler(FakeTimers(next_delay=None), io, max_io_events=4)
    assert scheduler.run_tick(300) == 4
    assert io.timeouts == [300, 0]


def test_io_error_sleeps_remaining_timeout_and_is_raised():
    slept = []
    io = FakeIO([1, OSError(9, "bad fd")])
    scheduler = EventScheduler(FakeTimers(fired=1, next_delay=80), io, max_io_events=5, sleep=slept.append)
    with pytest.raises(IOPollError) as info:
        scheduler.run_tick(500)
    assert info.value.events == 2
    assert slept == [0.0]
    assert metrics.get("io_poll_errors") == 1


def test_invalid_event_cap():
    with pytest.raises(ValueError):
        EventScheduler(FakeTimers(), FakeIO(), max_io_events=0)


class CountingIO:
    def __init__(self):
        self.ticks = 0
        self.seen = threading.Event()

    def poll(self, timeout_ms):
        self.ticks += 1
        if self.ticks >= 3:
            self.seen.set()
        time.sleep(timeout_ms / 1000.0)
        return 0


def test_worker_ticks_until_stopped():
    io = CountingIO()
    worker = SchedulerWorker(EventScheduler(FakeTimers(), io), max_wait_ms=5)
    worker.start()
    assert io.seen.wait(2.0)
    worker.stop(timeout=2.0)
    assert not worker.running
    ticks = io.ticks
    time.sleep(0.05)
    assert io.ticks == ticks
    with pytest.raises(RuntimeError):
        worker.start()


def test_worker_survives_io_errors():
    io = FakeIO([OSError(4, "interrupted")] * 3)
    worker = SchedulerWorker(EventScheduler(FakeTimers(), io, sleep=lambda s: None), max_wait_ms=1)
    worker.start()
    deadline = time.monotonic() + 2.0
    while len(io.timeouts) < 5 and time.monotonic() < deadline:
        time.sleep(0.01)
    worker.stop(timeout=2.0)
    assert len(io.timeouts) >= 5
    assert worker.error is None


def test_worker_exits_on_invariant_violation():
    worker = SchedulerWorker(EventScheduler(FakeTimers(next_delay=-5), FakeIO()), max_wait_ms=1)
    worker.start()
    deadline = time.monotonic() + 2.0
    while worker.running and time.monotonic() < deadline:
        time.sleep(0.01)
    assert not worker.running
    assert isinstance(worker.error, SchedulerInvariantError)
    worker.stop()
