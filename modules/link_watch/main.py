from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict:
    """
    Entry point for the 'link_watch' module.

    Accepts kwargs (from scheduler/runner), including:
      sites_path: str                      # JSON list of {url, selector, terms}
      state_backend: "sqs" | "file" = "sqs"
      queue_name_env / queue_url: str      # *_env keys are resolved by the runner
      state_path: str                      # file backend
      email_to_env / email_to: str | list[str]
      ttl_days: int = 30
      max_parallel: int = 8
      fail_fast: bool = False

      # Special-run flags:
      ingest_only_no_email: bool = False
      email_all_even_if_seen: bool = False

    Returns:
      meta dict; the email (if any) has already been sent by the engine.
    """
    settings = Settings.from_env_and_kwargs(_strip_env_suffix(kwargs))

    log_activity({
        "component": "link_watch.main",
        "op": "settings",
        "site_count": len(settings.sites),
        "ttl_days": settings.ttl_days,
        "fingerprint_length": settings.fingerprint_length,
        "max_parallel": settings.max_parallel,
    })

    return _run_engine(settings)


def _strip_env_suffix(kwargs: dict[str, Any]) -> dict[str, Any]:
    """
    The runner swaps `<name>_env` values for the environment value but keeps the
    key; map them back onto `<name>` unless `<name>` was given explicitly.
    """
    out = dict(kwargs)
    for k, v in kwargs.items():
        if k.endswith("_env"):
            base = k[: -len("_env")]
            out.pop(k)
            if v not in (None, "") and out.get(base) in (None, ""):
                out[base] = v
    return out
