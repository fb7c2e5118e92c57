# util/config.py
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

MAX_COMPONENTS = 8
STUN_PORT = 3478


def parse_server(value: str, default_port: int = STUN_PORT) -> Tuple[str, int]:
    """Split "host[:port]" into (host, port). Bracketed IPv6 literals are accepted."""
    value = value.strip()
    if not value:
        raise ValueError("empty server address")
    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            raise ValueError(f"unterminated IPv6 literal in {value!r}")
        if rest and not rest.startswith(":"):
            raise ValueError(f"unexpected text after IPv6 literal in {value!r}")
        port_str = rest[1:]
    elif value.count(":") == 1:
        host, port_str = value.split(":")
    else:
        host, port_str = value, ""
    if not port_str:
        return host, default_port
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in {value!r}")
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in {value!r}")
    return host, port


@dataclass
class IceConfig:
    comp_cnt: int = 1
    stun_server: Optional[Tuple[str, int]] = None
    use_ipv6: bool = False
    turn_server: Optional[Tuple[str, int]] = None
    turn_tcp: bool = False
    turn_username: Optional[str] = None
    turn_password: Optional[str] = None
    negotiation_timeout_ms: int = 60_000
    tick_ms: int = 500
    max_io_events: int = 1
    log_file: Optional[str] = None
    name: str = "icedemo"

    def validate(self) -> "IceConfig":
        if not 1 <= self.comp_cnt <= MAX_COMPONENTS:
            raise ValueError(f"component count must be between 1 and {MAX_COMPONENTS}")
        if self.negotiation_timeout_ms <= 0:
            raise ValueError("negotiation timeout must be positive")
        if self.tick_ms <= 0:
            raise ValueError("tick must be positive")
        if self.max_io_events < 1:
            raise ValueError("max_io_events must be at least 1")
        if self.turn_server is None:
            if self.turn_tcp or self.turn_username or self.turn_password:
                raise ValueError("TURN options need a TURN server")
        elif not (self.turn_username and self.turn_password):
            raise ValueError("TURN server needs a username and password")
        return self

    def turn_kwargs(self) -> Dict[str, Any]:
        """aioice.Connection arguments for the relay allocation; empty without a TURN server."""
        if self.turn_server is None:
            return {}
        return {
            "turn_server": self.turn_server,
            "turn_username": self.turn_username,
            "turn_password": self.turn_password,
            "turn_transport": "tcp" if self.turn_tcp else "udp",
        }
