# tests/conftest.py
import pytest

from nat.candidate import Candidate, CandidateType, SocketAddress
from nat.events import GatheringComplete, NegotiationComplete
from net.session_manager import SessionController
from util import metrics

REMOTE_SDP = (
    "a=ice-ufrag:abc\n"
    "a=ice-pwd:xyz\n"
    "m=audio 5000 RTP/AVP 0\n"
    "c=IN IP4 10.0.0.1\n"
    "a=candidate:1 1 UDP 100 10.0.0.1 5000 typ host\n"
    "\n"
)


def cand(foundation, comp, prio, host, port, typ="host"):
    return Candidate(foundation, comp, prio, SocketAddress(host, port), CandidateType(typ))


class FakeEngine:
    """Stands in for ICEAgent: records calls, emits events only when a test asks."""

    def __init__(self, emit, on_data, comp_cnt=1, candidates=None):
        self._emit = emit
        self.on_data = on_data
        self.comp_cnt = comp_cnt
        self.local = list(candidates) if candidates is not None else [
            cand("H1", c, 2130706431 - c, "192.168.1.10", 40000 + c) for c in range(1, comp_cnt + 1)
        ]
        self.ufrag, self.pwd = "lufrag", "lpwd"
        self.role = None
        self.session_id = 0
        self.has_session = False
        self.started = None
        self.sent = []
        self.stopped = 0
        self.destroyed = False
        self.fail_init = False

    @property
    def running_comp_cnt(self):
        if not self.has_session:
            return 0
        if self.started:
            return min(self.comp_cnt, max(c.component_id for c in self.started[2]))
        return self.comp_cnt

    def init_session(self, role):
        if self.fail_init:
            from util.errors import EngineError
            raise EngineError("cannot create session")
        self.session_id += 1
        self.role = role
        self.has_session = True
        return self.session_id

    def get_ufrag_pwd(self):
        return self.ufrag, self.pwd

    def enum_candidates(self, component):
        return [c for c in self.local if c.component_id == component]

    def get_default_candidate(self, component):
        found = self.enum_candidates(component)
        return found[0] if found else None

    def start_negotiation(self, ufrag, pwd, candidates, peer_addresses=None):
        self.started = (ufrag, pwd, list(candidates), peer_addresses)

    def send(self, component, data, dest=None):
        self.sent.append((component, data, dest))

    def stop_session(self):
        self.has_session = False
        self.started = None
        self.stopped += 1

    def destroy(self):
        self.has_session = False
        self.destroyed = True

    # driven by tests, as the worker thread would
    def finish_gathering(self, ok=True, reason=None):
        self._emit(GatheringComplete(self.session_id, ok, reason))

    def finish_negotiation(self, ok=True, reason=None):
        self._emit(NegotiationComplete(self.session_id, ok, reason))


@pytest.fixture(autouse=True)
def clean_counters():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def engines():
    return []


@pytest.fixture
def make_controller(engines):
    def _make(comp_cnt=1, candidates=None):
        def factory(emit, on_data):
            engine = FakeEngine(emit, on_data, comp_cnt=comp_cnt, candidates=candidates)
            engines.append(engine)
            return engine
        return SessionController(factory, name="test")
    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()
