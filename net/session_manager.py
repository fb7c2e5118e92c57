# net/session_manager.py
import enum
import queue
from typing import Any, Callable, Dict, Iterable, Optional

from nat.candidate import Role, SocketAddress
from nat.events import GatheringComplete, NegotiationComplete
from net.remote_info import RemoteInfoStore, RemoteSessionInfo
from sdp.codec import SDP_CAPACITY, decode_remote, encode_session
from util.errors import EngineError, ParseError, SequencingError
from util.log import log
from util.metrics import incr

PREVIEW_BYTES = 64


class SessionState(enum.Enum):
    NO_INSTANCE = "no instance"
    INSTANCE_CREATED = "session not created"
    SESSION_INITIALIZED = "session ready"
    NEGOTIATION_RUNNING = "negotiation is in progress"
    NEGOTIATION_DONE = "negotiation complete"


SESSION_STATES = (
    SessionState.SESSION_INITIALIZED,
    SessionState.NEGOTIATION_RUNNING,
    SessionState.NEGOTIATION_DONE,
)

EngineFactory = Callable[[Callable[[object], None], Callable[[int, bytes, Optional[SocketAddress]], None]], Any]


def preview_payload(data: bytes, limit: int = PREVIEW_BYTES) -> str:
    """Printable rendering of a datagram; makes no assumption that it is text."""
    text = data[:limit].decode("utf-8", errors="replace")
    text = "".join(ch if ch.isprintable() else "." for ch in text)
    return text + "..." if len(data) > limit else text


class SessionController:
    """
    Owns the ICE instance, the session state and the remote description.

    Operator commands call in from one thread. The engine reports back from the
    scheduler worker through the `events` queue; those reports are applied here,
    synchronously, at the start of every operation (poll_events).
    """

    def __init__(self, engine_factory: EngineFactory, events: Optional[queue.Queue] = None,
                 name: str = "icedemo") -> None:
        self.name = name
        self._engine_factory = engine_factory
        self._events: queue.Queue = events if events is not None else queue.Queue()
        self._engine_token: Optional[object] = None
        self._session_id = 0

        self.engine = None
        self.state = SessionState.NO_INSTANCE
        self.negotiation_ok: Optional[bool] = None
        self.gathered = False
        self.remote = RemoteInfoStore()

    # ---------------- guards ----------------
    def _require_instance(self) -> None:
        if self.engine is None:
            raise SequencingError("No ICE instance, create it first")

    def _require_session(self) -> None:
        self._require_instance()
        if self.state not in SESSION_STATES:
            raise SequencingError("No ICE session, initialize first")

    # ---------------- instance ----------------
    def create(self) -> None:
        self.poll_events()
        if self.engine is not None:
            raise SequencingError("ICE instance already created, destroy it first")
        token = object()
        events = self._events
        engine = self._engine_factory(lambda ev: events.put((token, ev)), self.on_data_received)
        self.engine = engine
        self._engine_token = token
        self.state = SessionState.INSTANCE_CREATED
        self.negotiation_ok = None
        log("ice_instance_created", name=self.name, comp_cnt=engine.comp_cnt)

    def destroy(self) -> None:
        self.poll_events()
        self._require_instance()
        self._teardown_engine()
        log("ice_instance_destroyed", name=self.name)

    # ---------------- session ----------------
    def init_session(self, role: Role) -> None:
        self.poll_events()
        self._require_instance()
        if self.state in SESSION_STATES:
            raise SequencingError("Session already created")
        self._session_id = self.engine.init_session(role)
        self.state = SessionState.SESSION_INITIALIZED
        self.negotiation_ok = None
        self.gathered = False
        self.remote.reset()
        log("ice_session_created", name=self.name, role=role.value)

    def stop_session(self) -> None:
        self.poll_events()
        self._require_session()
        self.engine.stop_session()
        self._session_id = 0
        self.state = SessionState.INSTANCE_CREATED
        self.negotiation_ok = None
        self.gathered = False
        self.remote.reset()
        log("ice_session_stopped", name=self.name)

    def input_remote(self, lines: Iterable[str]) -> RemoteSessionInfo:
        self.poll_events()
        self._require_session()
        try:
            info = decode_remote(lines)
        except ParseError as e:
            self.remote.reset()
            incr("remote_parse_errors", 1)
            log("remote_parse_error", name=self.name, error=str(e))
            raise
        self.remote.store(info)
        log("remote_info_added", name=self.name, candidates=len(info.candidates),
            comp_cnt=info.component_count)
        return info

    def start_negotiation(self) -> None:
        self.poll_events()
        self._require_session()
        if self.state is not SessionState.SESSION_INITIALIZED:
            raise SequencingError("ICE negotiation already started")
        info = self.remote.current
        if info is None:
            raise SequencingError("No remote info, input remote info first")
        if not self.gathered:
            raise SequencingError("Candidate gathering still in progress")
        self.engine.start_negotiation(info.ufrag, info.password, info.candidates,
                                      dict(info.default_address))
        self.state = SessionState.NEGOTIATION_RUNNING
        log("ice_negotiation_started", name=self.name, remote_candidates=len(info.candidates))

    def send_data(self, component: int, data: bytes) -> None:
        self.poll_events()
        self._require_session()
        comp_cnt = self.engine.running_comp_cnt
        if not 1 <= component <= comp_cnt:
            raise SequencingError(f"invalid component ID {component} (1..{comp_cnt})")
        info = self.remote.current
        dest = info.default_address.get(component) if info else None
        self.engine.send(component, data, dest)
        log("data_sent", name=self.name, component=component, bytes=len(data))

    def encode_local(self, capacity: int = SDP_CAPACITY) -> str:
        self.poll_events()
        self._require_session()
        return encode_session(self.engine, capacity)

    def describe(self) -> Dict[str, Any]:
        self.poll_events()
        engine = self.engine
        return {
            "state": self.state,
            "comp_cnt": engine.comp_cnt if engine else 0,
            "negotiated_comp_cnt": engine.running_comp_cnt if engine else 0,
            "role": engine.role if engine and self.state in SESSION_STATES else None,
            "gathered": self.gathered,
            "negotiation_ok": self.negotiation_ok,
            "remote": self.remote.current,
        }

    # ---------------- engine callbacks ----------------
    def on_data_received(self, component: int, data: bytes, src: Optional[SocketAddress]) -> None:
        # runs on the worker thread: log only, no controller state
        log("data_received", name=self.name, component=component, bytes=len(data),
            src=str(src) if src else "unknown", preview=preview_payload(data))

    def poll_events(self) -> int:
        applied = 0
        while True:
            try:
                token, event = self._events.get_nowait()
            except queue.Empty:
                return applied
            if token is not self._engine_token or event.session_id != self._session_id:
                log("engine_event_dropped", name=self.name, event=type(event).__name__)
                continue
            self._apply(event)
            applied += 1

    def _apply(self, event) -> None:
        if isinstance(event, GatheringComplete):
            if event.ok:
                self.gathered = True
                log("ice_init_complete", name=self.name)
            else:
                log("ice_init_failed", name=self.name, reason=event.reason)
                self._teardown_engine()
        elif isinstance(event, NegotiationComplete):
            if self.state is not SessionState.NEGOTIATION_RUNNING:
                return
            self.negotiation_ok = event.ok
            if event.ok:
                self.state = SessionState.NEGOTIATION_DONE
                log("ice_negotiation_complete", name=self.name)
            else:
                log("ice_negotiation_failed", name=self.name, reason=event.reason)
                self._teardown_engine()

    def _teardown_engine(self) -> None:
        engine, self.engine = self.engine, None
        self._engine_token = None
        self._session_id = 0
        self.state = SessionState.NO_INSTANCE
        self.gathered = False
        self.remote.reset()
        if engine is None:
            return
        try:
            engine.destroy()
        except EngineError as e:
            log("ice_destroy_error", name=self.name, error=str(e))

    def shutdown(self) -> None:
        """Best-effort teardown for process exit."""
        self.poll_events()
        if self.engine is not None:
            self._teardown_engine()
            log("ice_instance_destroyed", name=self.name)
