# net/scheduler.py
import threading
import time
from typing import Callable, Optional

from util.log import log
from util.metrics import incr

MAX_NET_EVENTS = 1
MAX_TIMEOUT_MS = 1000
DEFAULT_TICK_MS = 500


class IOPollError(OSError):
    """I/O poll failed; `events` is what the tick processed before the failure."""

    def __init__(self, events: int, cause: OSError) -> None:
        super().__init__(cause.errno, f"I/O poll failed: {cause}")
        self.events = events
        self.cause = cause


class SchedulerInvariantError(RuntimeError):
    pass


class EventScheduler:
    """
    Merges a timer source and an I/O readiness source into one bounded tick.

    timers.poll() -> (fired, next_delay_ms or None)
    io.poll(timeout_ms) -> number of I/O events, raises OSError
    """

    def __init__(self, timers, io, max_io_events: int = MAX_NET_EVENTS,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        if max_io_events < 1:
            raise ValueError("max_io_events must be at least 1")
        self.timers = timers
        self.io = io
        self.max_io_events = max_io_events
        self._sleep = sleep

    def io_timeout(self, next_delay_ms: Optional[int], max_wait_ms: int) -> int:
        # a negative delay would make the I/O poll block forever
        if next_delay_ms is not None and next_delay_ms < 0:
            raise SchedulerInvariantError(f"timer source reported negative delay {next_delay_ms}ms")
        timeout = max_wait_ms if next_delay_ms is None else next_delay_ms
        return max(0, min(timeout, max_wait_ms, MAX_TIMEOUT_MS))

    def run_tick(self, max_wait_ms: int) -> int:
        fired, next_delay = self.timers.poll()
        count = fired
        timeout = self.io_timeout(next_delay, max_wait_ms)

        # Keep polling while there are immediate events, so a burst of
        # completions is not drained one event per tick.
        net_events = 0
        while True:
            try:
                c = self.io.poll(timeout)
            except OSError as e:
                incr("io_poll_errors", 1)
                log("io_poll_error", error=str(e), timeout_ms=timeout)
                self._sleep(timeout / 1000.0)
                raise IOPollError(count + net_events, e) from e
            if c == 0:
                break
            net_events += c
            timeout = 0
            if net_events >= self.max_io_events:
                break

        incr("scheduler_ticks", 1)
        return count + net_events


class SchedulerWorker:
    """Background thread that runs EventScheduler ticks until stop() is called."""

    def __init__(self, scheduler: EventScheduler, max_wait_ms: int = DEFAULT_TICK_MS,
                 name: str = "ice-worker") -> None:
        self.scheduler = scheduler
        self.max_wait_ms = max_wait_ms
        self.name = name
        self.error: Optional[BaseException] = None
        self._quit = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("worker already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        log("worker_start", name=self.name, tick_ms=self.max_wait_ms)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Set the quit flag and wait for the current tick to finish."""
        self._quit.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        log("worker_stop", name=self.name)

    def _run(self) -> None:
        while not self._quit.is_set():
            try:
                self.scheduler.run_tick(self.max_wait_ms)
            except IOPollError:
                # already logged and slept by the tick
                continue
            except SchedulerInvariantError as e:
                self.error = e
                log("worker_fatal", name=self.name, error=str(e))
                return

