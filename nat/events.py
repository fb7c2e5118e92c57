# nat/events.py
# Engine notifications, posted from the worker thread and applied by SessionController.
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class GatheringComplete:
    session_id: int
    ok: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class NegotiationComplete:
    session_id: int
    ok: bool
    reason: Optional[str] = None
