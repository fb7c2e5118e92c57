import json
import logging
import sys
import threading
from typing import Any, Optional, TextIO

from util.metrics import now_ms

_lock = threading.Lock()
_log_file: Optional[TextIO] = None

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure(log_file: Optional[str] = None, level: int = logging.INFO) -> None:
    """Set up stdlib logging and the JSON event sink. With log_file, both also append there."""
    global _log_file
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # aioice logs every STUN transaction at INFO
    logging.getLogger("aioice").setLevel(max(level, logging.WARNING))
    with _lock:
        if _log_file is not None:
            _log_file.close()
        _log_file = open(log_file, "a", encoding="utf-8") if log_file else None


def close() -> None:
    global _log_file
    with _lock:
        if _log_file is not None:
            _log_file.close()
            _log_file = None


def log(event: str, **fields: Any) -> None:
    record = {"ts_ms": now_ms(), "event": event}
    record.update(fields)
    line = json.dumps(record, separators=(",", ":"), default=str)
    with _lock:
        print(line, file=sys.stdout, flush=True)
        if _log_file is not None:
            _log_file.write(line + "\n")
            _log_file.flush()
