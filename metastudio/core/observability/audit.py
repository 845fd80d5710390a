import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict

from metastudio.core.registry.events import MetadataChanged

_MAX_BYTES = 10 * 1024 * 1024  # 10MB
_BACKUP_COUNT = 5

_handler_cache: Dict[str, logging.Handler] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _get_rotating_handler(audit_path: Path) -> logging.Handler:
    key = str(audit_path.resolve())
    if key not in _handler_cache:
        audit_path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.handlers.RotatingFileHandler(
            str(audit_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        h.setFormatter(logging.Formatter("%(message)s"))
        _handler_cache[key] = h
    return _handler_cache[key]


def write_audit_record(record: Dict[str, Any], audit_path: Path) -> None:
    line = json.dumps({"ts_ms": _now_ms(), **record}, separators=(",", ":"), ensure_ascii=False, default=str)
    handler = _get_rotating_handler(audit_path)
    log_record = logging.LogRecord(
        name="metastudio.audit",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=line,
        args=(),
        exc_info=None,
    )
    handler.emit(log_record)
    handler.flush()


class AuditSubscriber:
    """Appends every ``metadata.changed`` notification to a rotating JSONL audit log."""

    def __init__(self, audit_path: Path):
        self.audit_path = Path(audit_path)

    def __call__(self, event: MetadataChanged) -> None:
        write_audit_record(event.to_dict(), self.audit_path)


def read_audit_records(audit_path: Path, limit: int = 200) -> list:
    p = Path(audit_path)
    if not p.exists():
        return []
    lines = p.read_text(encoding="utf-8", errors="replace").splitlines()
    out = []
    for ln in lines[-max(1, min(limit, 2000)):]:
        try:
            out.append(json.loads(ln))
        except json.JSONDecodeError:
            continue
    return out
