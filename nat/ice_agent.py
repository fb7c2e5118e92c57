# nat/ice_agent.py
import asyncio
import concurrent.futures
import logging
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import aioice

from nat.candidate import Candidate, CandidateType, Role, SocketAddress
from nat.events import GatheringComplete, NegotiationComplete
from util.config import IceConfig
from util.errors import EngineError
from util.metrics import incr, observe_since

# how long the control thread waits for work handed to the worker loop
CALL_TIMEOUT = 5.0


def from_aioice(c: aioice.Candidate) -> Optional[Candidate]:
    try:
        cand_type = CandidateType.from_name(c.type)
    except ValueError:
        return None
    return Candidate(
        foundation=c.foundation,
        component_id=c.component,
        priority=c.priority,
        address=SocketAddress(c.host, c.port),
        type=cand_type,
    )


def to_aioice(c: Candidate) -> aioice.Candidate:
    return aioice.Candidate(
        foundation=c.foundation,
        component=c.component_id,
        transport="udp",
        priority=c.priority,
        host=c.address.host,
        port=c.address.port,
        type=c.type.value,
    )


class ICEAgent:
    """
    One ICE instance backed by aioice.

    The aioice connection lives on the scheduler worker's loop. Methods here are
    called from the control thread and hand their work to that loop; results come
    back through `emit` (GatheringComplete / NegotiationComplete) and `on_data`.
    """

    def __init__(
        self,
        name: str,
        config: IceConfig,
        loop: asyncio.AbstractEventLoop,
        timers,
        emit: Callable[[object], None],
        on_data: Callable[[int, bytes, Optional[SocketAddress]], None],
    ):
        self.name = name
        self.config = config
        self.comp_cnt = config.comp_cnt
        self._loop = loop
        self._timers = timers
        self._emit = emit
        self._on_data = on_data

        self.connection: Optional[aioice.Connection] = None
        self.role: Optional[Role] = None
        self.session_id = 0
        self.destroyed = False

        self._gather_task: Optional[asyncio.Task] = None
        self._nego_task: Optional[asyncio.Task] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._watchdog = None
        self._timed_out = False
        self._remote_comp_cnt = 0
        self._peer_addresses: Dict[int, SocketAddress] = {}

    # ---------------- control-thread API ----------------
    @property
    def running_comp_cnt(self) -> int:
        if self.connection is None:
            return 0
        if self._remote_comp_cnt:
            return min(self.comp_cnt, self._remote_comp_cnt)
        return self.comp_cnt

    def init_session(self, role: Role) -> int:
        """Create the ICE session and start gathering. Returns the session id."""
        self._check_alive()
        if self.connection is not None:
            raise EngineError("ICE session already created")
        self._call(self._open_session(role))
        logging.info(f"[{self.name}] ICE session created as {role.value}")
        return self.session_id

    def get_ufrag_pwd(self) -> Tuple[str, str]:
        conn = self._require_session()
        return conn.local_username, conn.local_password

    def enum_candidates(self, component: int) -> List[Candidate]:
        self._require_session()
        return self._call(self._local_candidates(component))

    def get_default_candidate(self, component: int) -> Candidate:
        self._require_session()
        cand = self._call(self._default_candidate(component))
        if cand is None:
            raise EngineError(f"no default candidate for component {component} (gathering incomplete?)")
        return cand

    def start_negotiation(self, ufrag: str, pwd: str, candidates: Sequence[Candidate],
                          peer_addresses: Optional[Dict[int, SocketAddress]] = None) -> None:
        self._require_session()
        if self._nego_task is not None:
            raise EngineError("ICE negotiation already started")
        self._peer_addresses = dict(peer_addresses or {})
        self._call(self._begin(ufrag, pwd, list(candidates)))
        self._watchdog = self._timers.schedule(self.config.negotiation_timeout_ms, self._on_watchdog,
                                               self.session_id)

    def send(self, component: int, data: bytes, dest: Optional[SocketAddress] = None) -> None:
        conn = self._require_session()
        # aioice routes over the selected pair; dest is only what the remote advertised
        self._call(conn.sendto(data, component))
        incr("bytes_sent", len(data))
        logging.info(f"[{self.name}] sent {len(data)} bytes on component {component} to {dest or 'selected pair'}")

    def stop_session(self) -> None:
        self._require_session()
        self._call(self._teardown())
        logging.info(f"[{self.name}] ICE session stopped")

    def destroy(self) -> None:
        if self.destroyed:
            return
        if self.connection is not None:
            self._call(self._teardown())
        self.destroyed = True
        logging.info(f"[{self.name}] ICE instance destroyed")

    # ---------------- helpers ----------------
    def _check_alive(self) -> None:
        if self.destroyed:
            raise EngineError("ICE instance already destroyed")

    def _require_session(self) -> aioice.Connection:
        self._check_alive()
        conn = self.connection
        if conn is None:
            raise EngineError("no ICE session")
        return conn

    def _call(self, coro):
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return fut.result(CALL_TIMEOUT)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            raise EngineError("ICE engine did not respond in time")
        except (ConnectionError, OSError, ValueError) as e:
            raise EngineError(str(e) or e.__class__.__name__) from e

    def _on_watchdog(self, session_id: int) -> None:
        # runs on the worker thread from the timer poll, the loop is idle here
        self._watchdog = None
        if session_id != self.session_id or self._nego_task is None or self._nego_task.done():
            return
        self._timed_out = True
        self._nego_task.cancel()

    # ---------------- worker-loop side ----------------
    async def _open_session(self, role: Role) -> None:
        self.connection = aioice.Connection(
            ice_controlling=role is Role.CONTROLLING,
            components=self.comp_cnt,
            stun_server=self.config.stun_server,
            use_ipv6=self.config.use_ipv6,
            **self.config.turn_kwargs(),
        )
        self.role = role
        self.session_id += 1
        self._timed_out = False
        self._remote_comp_cnt = 0
        self._gather_task = asyncio.ensure_future(self._gather(self.connection, self.session_id))

    async def _gather(self, conn: aioice.Connection, session_id: int) -> None:
        started = time.monotonic()
        try:
            await conn.gather_candidates()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logging.error(f"[{self.name}] ICE initialization failed: {e}")
            self._emit(GatheringComplete(session_id, False, str(e) or e.__class__.__name__))
            return
        elapsed = observe_since("gathering", started)
        logging.info(f"[{self.name}] ICE initialization successful, "
                     f"{len(conn.local_candidates)} local candidate(s) in {elapsed} ms")
        self._emit(GatheringComplete(session_id, True))

    async def _local_candidates(self, component: int) -> List[Candidate]:
        out = []
        for c in self.connection.local_candidates if self.connection else []:
            if c.component != component:
                continue
            cand = from_aioice(c)
            if cand is not None:
                out.append(cand)
        return out

    async def _default_candidate(self, component: int) -> Optional[Candidate]:
        if self.connection is None:
            return None
        c = self.connection.get_default_candidate(component)
        return from_aioice(c) if c is not None else None

    async def _begin(self, ufrag: str, pwd: str, candidates: List[Candidate]) -> None:
        conn = self.connection
        conn.remote_username = ufrag
        conn.remote_password = pwd
        for cand in candidates:
            if cand.component_id > self.comp_cnt:
                logging.warning(f"[{self.name}] ignoring remote candidate for component {cand.component_id}")
                continue
            await conn.add_remote_candidate(to_aioice(cand))
        # end-of-candidates
        await conn.add_remote_candidate(None)
        self._remote_comp_cnt = max((c.component_id for c in candidates), default=0)
        self._nego_task = asyncio.ensure_future(self._negotiate(conn, self.session_id))
        logging.info(f"[{self.name}] ICE negotiation started with {len(candidates)} remote candidate(s)")

    async def _negotiate(self, conn: aioice.Connection, session_id: int) -> None:
        started = time.monotonic()
        try:
            await conn.connect()
        except asyncio.CancelledError:
            if not self._timed_out:
                raise
            reason = "negotiation timed out"
        except Exception as e:
            reason = str(e) or e.__class__.__name__
        else:
            self._timers.cancel(self._watchdog)
            self._watchdog = None
            elapsed = observe_since("negotiation", started)
            logging.info(f"[{self.name}] ICE negotiation successful in {elapsed} ms")
            self._recv_task = asyncio.ensure_future(self._recv_loop(conn))
            self._emit(NegotiationComplete(session_id, True))
            return

        logging.error(f"[{self.name}] ICE negotiation failed: {reason}")
        await self._teardown()
        self._emit(NegotiationComplete(session_id, False, reason))

    async def _recv_loop(self, conn: aioice.Connection) -> None:
        try:
            while True:
                data, component = await conn.recvfrom()
                incr("bytes_received", len(data))
                self._on_data(component, data, self._peer_addresses.get(component))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logging.warning(f"[{self.name}] recv loop stopped: {e}")

    async def _teardown(self) -> None:
        conn, self.connection = self.connection, None
        self._timers.cancel(self._watchdog)
        self._watchdog = None
        current = asyncio.current_task()
        for task in (self._gather_task, self._nego_task, self._recv_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._gather_task = self._nego_task = self._recv_task = None
        self.role = None
        self._remote_comp_cnt = 0
        self._peer_addresses = {}
        if conn is not None:
            await conn.close()
