# nat/candidate.py
import enum
import ipaddress
from dataclasses import dataclass
from typing import NamedTuple

MAX_FOUNDATION_LEN = 32
MAX_PRIORITY = 2 ** 32 - 1


class SocketAddress(NamedTuple):
    host: str
    port: int

    @property
    def family(self) -> int:
        return 6 if ":" in self.host else 4

    @classmethod
    def parse(cls, host: str, port) -> "SocketAddress":
        """Validate an address literal and port. Raises ValueError."""
        try:
            ip = ipaddress.IPv6Address(host) if ":" in host else ipaddress.IPv4Address(host)
        except ValueError:
            raise ValueError(f"invalid IP address '{host}'")
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ValueError(f"invalid port '{port}'")
        if not 0 <= port <= 65535:
            raise ValueError(f"port out of range '{port}'")
        return cls(str(ip), port)

    def __str__(self) -> str:
        if self.family == 6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class CandidateType(enum.Enum):
    HOST = "host"
    SRFLX = "srflx"
    RELAY = "relay"

    @classmethod
    def from_name(cls, name: str) -> "CandidateType":
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"invalid candidate type '{name}'")


class Role(enum.Enum):
    CONTROLLING = "controlling"
    CONTROLLED = "controlled"

    @classmethod
    def from_char(cls, value: str) -> "Role":
        """'o' (offerer) is controlling, anything else is controlled."""
        return cls.CONTROLLING if value[:1].lower() == "o" else cls.CONTROLLED


@dataclass(frozen=True)
class Candidate:
    foundation: str
    component_id: int
    priority: int
    address: SocketAddress
    type: CandidateType

    def __post_init__(self):
        if not self.foundation or len(self.foundation) > MAX_FOUNDATION_LEN:
            raise ValueError(f"invalid foundation '{self.foundation}'")
        if not self.foundation.isascii():
            raise ValueError(f"non-ASCII foundation '{self.foundation}'")
        if self.component_id < 1:
            raise ValueError(f"invalid component id {self.component_id}")
        if not 0 <= self.priority <= MAX_PRIORITY:
            raise ValueError(f"priority out of range {self.priority}")
