# net/timer_heap.py
import heapq
import itertools
import math
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

from util.log import log
from util.metrics import incr


class TimerEntry:
    __slots__ = ("due", "seq", "callback", "args", "cancelled")

    def __init__(self, due: float, seq: int, callback: Callable[..., Any], args: tuple) -> None:
        self.due = due
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def __lt__(self, other: "TimerEntry") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class TimerHeap:
    """
    Thread-safe timer queue polled by the scheduler worker.
    Callbacks run on the polling thread, outside the lock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 wakeup: Optional[Callable[[], None]] = None) -> None:
        self._clock = clock
        self._wakeup = wakeup
        self._lock = threading.Lock()
        self._heap: List[TimerEntry] = []
        self._seq = itertools.count()
        self._live = 0

    def __len__(self) -> int:
        with self._lock:
            return self._live

    def schedule(self, delay_ms: float, callback: Callable[..., Any], *args: Any) -> TimerEntry:
        if delay_ms < 0:
            raise ValueError("timer delay must not be negative")
        entry = TimerEntry(self._clock() + delay_ms / 1000.0, next(self._seq), callback, args)
        with self._lock:
            heapq.heappush(self._heap, entry)
            self._live += 1
        if self._wakeup is not None:
            self._wakeup()
        return entry

    def cancel(self, entry: Optional[TimerEntry]) -> bool:
        """Returns False when the entry already fired or was cancelled."""
        if entry is None:
            return False
        with self._lock:
            if entry.cancelled:
                return False
            entry.cancelled = True
            self._live -= 1
            return True

    def poll(self) -> Tuple[int, Optional[int]]:
        """Fire every due timer. Returns (fired, ms until the next timer or None)."""
        fired = 0
        now = self._clock()
        while True:
            with self._lock:
                entry = self._pop_due(now)
            if entry is None:
                break
            fired += 1
            try:
                entry.callback(*entry.args)
            except Exception as e:
                incr("timer_errors", 1)
                log("timer_callback_error", callback=getattr(entry.callback, "__name__", repr(entry.callback)),
                    error=str(e))
        if fired:
            incr("timers_fired", fired)

        with self._lock:
            self._drop_cancelled()
            if not self._heap:
                return fired, None
            return fired, math.ceil((self._heap[0].due - now) * 1000)

    def _pop_due(self, now: float) -> Optional[TimerEntry]:
        self._drop_cancelled()
        if self._heap and self._heap[0].due <= now:
            entry = heapq.heappop(self._heap)
            # marks it as no longer cancellable
            entry.cancelled = True
            self._live -= 1
            return entry
        return None

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
