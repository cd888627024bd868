# service/logging_utils.py
"""
Structured JSONL logs: one activity file and one error file per day under
$LOG_DIR, named <prefix>-YYYY-MM-DD.jsonl. Records are redacted, stamped with
ts/host/pid/thread and appended as a single line each.

Environment (read on every call):
    LOG_DIR                 default /app/local/logs
    ACTIVITY_LOG_PREFIX     default "activity"
    ERROR_LOG_PREFIX        default "error"
    ACTIVITY_LOG_MAX_BYTES  rotate a day's file once it reaches this size (0 = never)
"""

from __future__ import annotations

import contextlib
import datetime as dt
import json
import os
import socket
import threading
from collections.abc import Collection
from typing import Any

REDACTED = "***REDACTED***"

# Case-insensitive substrings of keys whose values never reach disk.
SECRET_KEY_PARTS = frozenset({
    "password",
    "secret",
    "token",
    "authorization",
    "cookie",
    "smtp_pass",
    "receipthandle",
    "receipt_handle",
})

_HOST = socket.gethostname()
_append_lock = threading.Lock()


def write_activity_log(record: dict[str, Any]) -> None:
    """Append one activity record. The caller's dict is left untouched."""
    _append(_daily_path(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    _append(_daily_path(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def get_activity_log_path() -> str:
    return _daily_path(os.getenv("ACTIVITY_LOG_PREFIX", "activity"))


def get_error_log_path() -> str:
    return _daily_path(os.getenv("ERROR_LOG_PREFIX", "error"))


def redact(record: dict[str, Any], keys: Collection[str] = SECRET_KEY_PARTS) -> dict[str, Any]:
    """Deep copy of `record` with secret-looking values replaced."""
    return _scrub(record, keys)


def _daily_path(prefix: str) -> str:
    log_dir = os.getenv("LOG_DIR", "/app/local/logs")
    return os.path.join(log_dir, f"{prefix}-{dt.date.today().isoformat()}.jsonl")


def _scrub(value: Any, keys: Collection[str]) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and any(part in k.lower() for part in keys) else _scrub(v, keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_scrub(v, keys) for v in value]
    return value


def _rotation_limit() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _maybe_rotate(path: str) -> None:
    limit = _rotation_limit()
    if limit <= 0:
        return
    try:
        size = os.path.getsize(path)
    except FileNotFoundError:
        return
    if size >= limit:
        suffix = dt.datetime.now().strftime("%Y%m%d-%H%M%S")
        with contextlib.suppress(FileNotFoundError):
            os.replace(path, f"{path}.{suffix}")


def _append(path: str, record: dict[str, Any]) -> None:
    payload = _scrub(record, SECRET_KEY_PARTS)
    payload.setdefault("ts", dt.datetime.now().astimezone().isoformat(timespec="seconds"))
    payload["_meta"] = {"host": _HOST, "pid": os.getpid(), "thread": threading.current_thread().name}
    # encode before touching the file so a bad record leaves no partial line
    line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n"

    with _append_lock:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        _maybe_rotate(path)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
