# sdp/codec.py
"""
Text session description exchanged by copy-paste between two harness instances.

Only what ICE needs is carried: credentials, one default address per
component and the candidate list. The default address of component 1 sits in
the m=/c= pair, component 2 in a=rtcp and components 3+ in a=Xice-defcand,
so the layout stays readable by ordinary SDP tooling.
"""
import re
from typing import Dict, Iterable, List, Optional

from nat.candidate import Candidate, CandidateType, SocketAddress
from net.remote_info import RemoteSessionInfo
from util.config import MAX_COMPONENTS
from util.errors import CapacityError, EngineError, ParseError
from util.log import log

SDP_CAPACITY = 4000
MAX_CANDIDATES = 64
MAX_LINE_LENGTH = 256

ORIGIN_ID = 3414953978
TRANSPORT = "UDP"

_ATTR_SPLIT = re.compile(r"[:\s]")


# ---------------- encode ----------------
def _net_type(addr: SocketAddress) -> str:
    return "IP6" if addr.family == 6 else "IP4"


def format_candidate(cand: Candidate) -> str:
    return (
        f"a=candidate:{cand.foundation} {cand.component_id} {TRANSPORT} {cand.priority} "
        f"{cand.address.host} {cand.address.port} typ {cand.type.value}"
    )


def _default_address_lines(component: int, addr: SocketAddress) -> List[str]:
    if component == 1:
        return [f"m=audio {addr.port} RTP/AVP 0", f"c=IN {_net_type(addr)} {addr.host}"]
    if component == 2:
        return [f"a=rtcp:{addr.port} IN {_net_type(addr)} {addr.host}"]
    return [f"a=Xice-defcand:{addr.port} IN {_net_type(addr)} {addr.host}"]


def encode_session(agent, capacity: int = SDP_CAPACITY) -> str:
    """
    Render the local session of `agent` (anything exposing comp_cnt,
    get_ufrag_pwd, get_default_candidate and enum_candidates).
    Raises CapacityError when the whole text does not fit `capacity`.
    """
    ufrag, pwd = agent.get_ufrag_pwd()
    lines = [
        "v=0",
        f"o=- {ORIGIN_ID} {ORIGIN_ID} IN IP4 localhost",
        "s=ice",
        "t=0 0",
        f"a=ice-ufrag:{ufrag}",
        f"a=ice-pwd:{pwd}",
    ]
    for comp in range(1, agent.comp_cnt + 1):
        default = agent.get_default_candidate(comp)
        if default is None:
            raise EngineError(f"no default candidate for component {comp}")
        lines.extend(_default_address_lines(comp, default.address))
        lines.extend(format_candidate(c) for c in agent.enum_candidates(comp))

    text = "\n".join(lines) + "\n"
    if len(text) > capacity:
        raise CapacityError(f"session description needs {len(text)} bytes, capacity is {capacity}")
    return text


# ---------------- decode ----------------
def _address(host: str, port, what: str) -> SocketAddress:
    try:
        return SocketAddress.parse(host, port)
    except ValueError as e:
        raise ParseError(f"{what}: {e}") from e


def _int(token: str, what: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise ParseError(f"{what}: '{token}' is not a number")


class _RemoteDescriptionParser:
    def __init__(self) -> None:
        self.ufrag = ""
        self.password = ""
        self.candidates: List[Candidate] = []
        self.defaults: Dict[int, SocketAddress] = {}
        self.media_cnt = 0
        self.comp1_port: Optional[int] = None
        self.comp1_host = ""
        self._next_extra_comp = 3

    def feed(self, line: str) -> None:
        if len(line) > MAX_LINE_LENGTH:
            raise ParseError(f"line longer than {MAX_LINE_LENGTH} characters")
        # everything after a second media section is ignored
        if self.media_cnt > 1:
            return
        kind, body = line[0], line[2:]
        if kind == "m":
            self._media(body)
        elif kind == "c":
            self._connection(body)
        elif kind == "a":
            self._attribute(body)

    def _media(self, body: str) -> None:
        self.media_cnt += 1
        if self.media_cnt > 1:
            log("remote_media_ignored", line=f"m={body}")
            return
        tokens = body.split()
        if len(tokens) < 2:
            raise ParseError("Error parsing media line")
        self.comp1_port = _int(tokens[1], "media line port")

    def _connection(self, body: str) -> None:
        tokens = body.split()
        if len(tokens) < 3:
            raise ParseError("Error parsing connection line")
        self.comp1_host = tokens[2]

    def _attribute(self, body: str) -> None:
        parts = _ATTR_SPLIT.split(body, maxsplit=1)
        name = parts[0]
        value = parts[1] if len(parts) > 1 else ""
        if name == "ice-ufrag":
            self.ufrag = value
        elif name == "ice-pwd":
            self.password = value
        elif name == "rtcp":
            self.defaults[2] = self._default_address(value, "rtcp attribute")
        elif name == "Xice-defcand":
            comp = self._next_extra_comp
            if comp > MAX_COMPONENTS:
                raise ParseError("too many default candidate attributes")
            self.defaults[comp] = self._default_address(value, "Xice-defcand attribute")
            self._next_extra_comp += 1
        elif name == "candidate":
            self._candidate(value)

    def _default_address(self, value: str, what: str) -> SocketAddress:
        # <port> IN <net-type> <address>
        tokens = value.split()
        if len(tokens) < 4 or tokens[1] != "IN":
            raise ParseError(f"Error parsing {what}")
        return _address(tokens[3], _int(tokens[0], what), what)

    def _candidate(self, value: str) -> None:
        # <foundation> <comp-id> <transport> <priority> <address> <port> typ <type>
        tokens = value.split()
        if len(tokens) != 8 or tokens[6] != "typ":
            raise ParseError("Invalid ICE candidate line")
        if len(self.candidates) >= MAX_CANDIDATES:
            raise ParseError(f"more than {MAX_CANDIDATES} remote candidates")
        foundation, comp_str, _transport, prio_str, host, port_str, _, type_name = tokens
        try:
            cand_type = CandidateType.from_name(type_name)
        except ValueError as e:
            raise ParseError(str(e)) from e
        comp_id = _int(comp_str, "candidate component id")
        if not 1 <= comp_id <= MAX_COMPONENTS:
            raise ParseError(f"candidate component id {comp_id} out of range")
        addr = _address(host, _int(port_str, "candidate port"), "candidate address")
        try:
            cand = Candidate(
                foundation=foundation,
                component_id=comp_id,
                priority=_int(prio_str, "candidate priority"),
                address=addr,
                type=cand_type,
            )
        except ValueError as e:
            raise ParseError(f"Invalid ICE candidate line: {e}") from e
        self.candidates.append(cand)

    def finish(self) -> RemoteSessionInfo:
        if not self.candidates or not self.ufrag or not self.password:
            raise ParseError("not enough info")
        if not self.comp1_port or not self.comp1_host:
            raise ParseError("default address for component 1 not found")
        self.defaults[1] = _address(self.comp1_host, self.comp1_port, "Invalid IP address in c= line")
        try:
            return RemoteSessionInfo(
                ufrag=self.ufrag,
                password=self.password,
                candidates=tuple(self.candidates),
                default_address=self.defaults,
            )
        except ValueError as e:
            raise ParseError(str(e)) from e


def decode_remote(lines: Iterable[str]) -> RemoteSessionInfo:
    """
    Decode a remote description, reading until the first blank line or the end
    of `lines`. Any malformed line raises ParseError; no partial result escapes.
    """
    parser = _RemoteDescriptionParser()
    for raw in lines:
        line = raw.strip()
        if not line:
            break
        parser.feed(line)
    return parser.finish()


def decode_remote_text(text: str) -> RemoteSessionInfo:
    return decode_remote(text.splitlines())
