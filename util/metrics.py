import time
import threading
from typing import Dict, List


class _CounterStore:
    """Counters plus duration samples, shared by the control and worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._durations: Dict[str, List[int]] = {}

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def observe(self, name: str, elapsed_ms: int) -> None:
        with self._lock:
            self._durations.setdefault(name, []).append(elapsed_ms)

    def snapshot(self) -> Dict[str, int]:
        """Counters, then `<name>.count/.last_ms/.max_ms` for every observed duration."""
        with self._lock:
            out = dict(sorted(self._counters.items()))
            for name, samples in sorted(self._durations.items()):
                out[f"{name}.count"] = len(samples)
                out[f"{name}.last_ms"] = samples[-1]
                out[f"{name}.max_ms"] = max(samples)
            return out

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()
            self._durations.clear()


# scheduler ticks, poll errors, parse errors, bytes in/out; gathering and negotiation times
COUNTERS = _CounterStore()


def incr(name: str, value: int = 1) -> None:
    COUNTERS.inc(name, value)


def get(name: str) -> int:
    return COUNTERS.get(name)


def observe_since(name: str, started: float) -> int:
    """Record the time since `started` (a time.monotonic() value) under `name`."""
    elapsed = int((time.monotonic() - started) * 1000)
    COUNTERS.observe(name, elapsed)
    return elapsed


def snapshot() -> Dict[str, int]:
    return COUNTERS.snapshot()


def reset() -> None:
    COUNTERS.clear()


def now_ms() -> int:
    return int(time.time() * 1000)
