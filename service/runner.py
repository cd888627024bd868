# service/runner.py
"""
Run a module's `run(**kwargs)` once, the same way for scheduled and ad-hoc runs.

Kwarg conventions (applied to every job before the call):
  * `<name>_env: "VAR"` is replaced by the value of $VAR ("" when unset); the
    key is kept, the module decides what to do with it.
  * String values that look like JSON arrays/objects are decoded, then
    integers, floats and yes/no style booleans are recognized. Anything else
    passes through untouched.

A module returns None or a meta dict (optionally with a "message"). Every run
writes one `module_run` activity record, success or not, and failures are
re-raised to the caller.
"""

from __future__ import annotations

import importlib
import json
import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any

from service import logging_utils

log = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_WORDS = frozenset({"false", "f", "no", "n", "0"})


def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _coerce_scalar(text: str) -> Any:
    s = text.strip()
    if (s[1:] if s.startswith("-") else s).isdigit():
        return int(s)
    if any(ch.isdigit() for ch in s):
        try:
            return float(s)
        except ValueError:
            pass
    low = s.lower()
    if low in _TRUE_WORDS:
        return True
    if low in _FALSE_WORDS:
        return False
    return s


def _normalize_kwargs_types(kwargs: Mapping[str, Any] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in (kwargs or {}).items():
        if not isinstance(value, str):
            out[key] = value
        elif key.endswith("_env"):
            out[key] = os.getenv(value.strip(), "")
        elif value.strip()[:1] in ("[", "{"):
            try:
                out[key] = json.loads(value)
            except json.JSONDecodeError:
                out[key] = _coerce_scalar(value)
        else:
            out[key] = _coerce_scalar(value)
    return out


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    mod = importlib.import_module(module_path)
    fn = getattr(mod, "run", None)
    if not callable(fn):
        raise AttributeError(f"{module_path!r} has no callable run(**kwargs)")
    return fn


def _check_result(value: Any) -> dict[str, Any] | None:
    if value is None or isinstance(value, dict):
        return value
    raise TypeError(f"run() must return None or a dict, not {type(value).__name__}")


def run_module_once(
    module: str,
    kwargs: Mapping[str, Any] | None = None,
    trigger_type: str = "scheduled",
    job_context: Mapping[str, Any] | None = None,
    timeout_sec: int | None = None,
) -> tuple[dict[str, Any] | None, str]:
    """
    Returns (meta, run_id).

    With `timeout_sec`, a run that has not returned in time raises TimeoutError.
    The worker thread cannot be interrupted; it finishes in the background and
    its result is discarded.
    """
    run_id = uuid.uuid4().hex
    context = {**(job_context or {}), "run_id": run_id, "module": module,
               "trigger_type": trigger_type, "started_at": now_iso()}
    kw = _normalize_kwargs_types(kwargs)
    fn = _resolve_callable(module)

    meta: dict[str, Any] | None = None
    error: BaseException | None = None
    t0 = time.monotonic()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner")
    try:
        meta = _check_result(pool.submit(fn, **kw).result(timeout=timeout_sec or None))
    except FutureTimeout:
        error = TimeoutError(f"{module} did not finish within {timeout_sec}s")
    except Exception as e:
        error = e
    finally:
        pool.shutdown(wait=False)
    elapsed_ms = int((time.monotonic() - t0) * 1000)

    if error is None:
        record_meta = meta or {}
        message = str(record_meta.get("message", "OK"))
    elif isinstance(error, TimeoutError):
        record_meta, message = {"timeout_sec": timeout_sec}, str(error)
    else:
        record_meta, message = {"exception_type": type(error).__name__}, str(error)

    try:
        logging_utils.write_activity_log({
            "ts": now_iso(),
            "event": "module_run",
            "run_id": run_id,
            "module": module,
            "trigger_type": trigger_type,
            "ok": error is None,
            "message": message,
            "duration_ms": elapsed_ms,
            "context": context,
            "kwargs": kw,
            "meta": record_meta,
        })
    except OSError as e:
        log.warning("could not write module_run record: %s", e)

    if error is not None:
        raise error
    return meta, run_id
