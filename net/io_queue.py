# net/io_queue.py
import asyncio
import selectors
from typing import Callable, Optional


class CountingSelector(selectors.DefaultSelector):
    """Selector that counts ready events and can stop the loop as soon as there are some."""

    def __init__(self) -> None:
        super().__init__()
        self.events = 0
        self.on_ready: Optional[Callable[[], None]] = None

    def select(self, timeout=None):
        ready = super().select(timeout)
        if ready:
            self.events += len(ready)
            if self.on_ready is not None:
                self.on_ready()
        return ready


class LoopIOQueue:
    """
    Socket readiness queue backed by a private asyncio loop.

    The loop never runs on its own: poll() drives it for at most `timeout_ms`
    and returns how many I/O events the selector reported. Everything scheduled
    on the loop (aioice sockets, its retransmission timers, coroutines submitted
    from other threads) therefore only runs inside poll().
    """

    def __init__(self) -> None:
        self._selector = CountingSelector()
        self.loop = asyncio.SelectorEventLoop(self._selector)

    def poll(self, timeout_ms: int) -> int:
        before = self._selector.events
        if timeout_ms <= 0:
            # stop() before run_forever(): exactly one pass with a zero-timeout select
            self.loop.stop()
            self.loop.run_forever()
        else:
            handle = self.loop.call_later(timeout_ms / 1000.0, self.loop.stop)
            self._selector.on_ready = self.loop.stop
            try:
                self.loop.run_forever()
            finally:
                self._selector.on_ready = None
                handle.cancel()
        return self._selector.events - before

    def wakeup(self) -> None:
        """Make a blocked poll() return. Safe from any thread."""
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(lambda: None)

    def close(self) -> None:
        if self.loop.is_closed():
            return
        pending = [t for t in asyncio.all_tasks(self.loop) if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        self.loop.run_until_complete(self.loop.shutdown_asyncgens())
        self.loop.close()
