# net/remote_info.py
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from nat.candidate import Candidate, SocketAddress


@dataclass(frozen=True)
class RemoteSessionInfo:
    """A fully validated remote description. Never built half-way; the decoder
    raises instead of returning a partial one."""
    ufrag: str
    password: str
    candidates: Tuple[Candidate, ...]
    default_address: Mapping[int, SocketAddress] = field(default_factory=dict)

    def __post_init__(self):
        if not self.ufrag or not self.password:
            raise ValueError("remote ufrag and password are required")
        if not self.candidates:
            raise ValueError("at least one remote candidate is required")
        missing = [c for c in range(1, self.component_count + 1) if c not in self.default_address]
        if missing:
            raise ValueError(f"no default address for component(s) {missing}")
        object.__setattr__(self, "candidates", tuple(self.candidates))
        object.__setattr__(self, "default_address", MappingProxyType(dict(self.default_address)))

    @property
    def component_count(self) -> int:
        return max(c.component_id for c in self.candidates)


class RemoteInfoStore:
    """Holds the last remote description; either empty or one valid RemoteSessionInfo."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._info: Optional[RemoteSessionInfo] = None

    @property
    def current(self) -> Optional[RemoteSessionInfo]:
        with self._lock:
            return self._info

    def store(self, info: RemoteSessionInfo) -> None:
        with self._lock:
            self._info = info

    def reset(self) -> None:
        with self._lock:
            self._info = None

    def __bool__(self) -> bool:
        return self.current is not None
