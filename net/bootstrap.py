# net/bootstrap.py
import queue
import time
from typing import Callable, Optional

from nat.candidate import SocketAddress
from nat.ice_agent import ICEAgent
from net.io_queue import LoopIOQueue
from net.scheduler import EventScheduler, SchedulerWorker
from net.session_manager import SessionController
from net.timer_heap import TimerHeap
from util.config import IceConfig
from util.log import log

SHUTDOWN_GRACE = 0.5  # seconds


class IceRuntime:
    """
    Everything one harness process owns: timer heap + I/O queue, the worker
    thread that polls them, the engine event channel and the SessionController.
    """

    def __init__(self, config: IceConfig) -> None:
        self.config = config.validate()
        self.io = LoopIOQueue()
        self.timers = TimerHeap(wakeup=self.io.wakeup)
        self.scheduler = EventScheduler(self.timers, self.io, max_io_events=config.max_io_events)
        self.worker = SchedulerWorker(self.scheduler, max_wait_ms=config.tick_ms, name=f"{config.name}-worker")
        self.events: queue.Queue = queue.Queue()
        self.controller = SessionController(self._make_agent, self.events, name=config.name)
        self._instances = 0

    def _make_agent(self, emit: Callable[[object], None],
                    on_data: Callable[[int, bytes, Optional[SocketAddress]], None]) -> ICEAgent:
        self._instances += 1
        return ICEAgent(
            name=f"{self.config.name}-{self._instances}",
            config=self.config,
            loop=self.io.loop,
            timers=self.timers,
            emit=emit,
            on_data=on_data,
        )

    def start(self) -> None:
        self.worker.start()

    def shutdown(self, grace: float = SHUTDOWN_GRACE) -> None:
        """Destroy the ICE instance, let in-flight engine work settle, then stop the worker."""
        if self.worker.running:
            self.controller.shutdown()
            time.sleep(grace)
        self.worker.stop(timeout=5.0)
        self.io.close()
        log("runtime_shutdown", name=self.config.name)


def attach_runtime(config: IceConfig) -> IceRuntime:
    """Build the runtime and start its worker. Call shutdown() on the result when done."""
    runtime = IceRuntime(config)
    runtime.start()
    return runtime
