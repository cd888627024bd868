# service/config_schema.py
"""
Service configuration: where it comes from and what a valid one looks like.

    timezone: America/Sao_Paulo          # optional, $TZ or UTC otherwise
    executor_workers: 4                  # optional
    jobs:
      - id: link_watch                   # optional, defaults to name or module
        module: modules.link_watch
        trigger: {cron: "0 */6 * * *"}   # exactly one of cron / interval / date
        kwargs: {...}                    # passed to module.run(**kwargs)
        timeout_sec: 600
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import yaml

log = logging.getLogger(__name__)

TRIGGER_KINDS = ("cron", "interval", "date")

# field -> smallest accepted value
_INT_MINIMUMS = {"timeout_sec": 0, "misfire_grace_time": 0, "max_instances": 1}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """The service config file is unreadable or invalid."""


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Read the config from `path`, else $CONFIG_PATH. With neither, return an
    empty config (no jobs). Job ids, timezone and scalar job fields are
    normalized on the way out.
    """
    source = path or os.environ.get("CONFIG_PATH")
    if source:
        cfg = _parse_file(source)
    else:
        log.info("no config path given; starting with no jobs")
        cfg = {}

    jobs = cfg.get("jobs")
    cfg["jobs"] = [_normalized(job, i) for i, job in enumerate(jobs)] if isinstance(jobs, list) else []
    if not (isinstance(cfg.get("timezone"), str) and cfg["timezone"].strip()):
        cfg["timezone"] = os.environ.get("TZ", "UTC")
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError describing the first problem found."""
    if not isinstance(cfg, dict):
        raise ConfigError("config must be a mapping")
    if not isinstance(cfg.get("jobs"), list):
        raise ConfigError("'jobs' must be a list")
    if "timezone" in cfg and not isinstance(cfg["timezone"], str):
        raise ConfigError("'timezone' must be a string")

    ids: set[str] = set()
    for i, job in enumerate(cfg["jobs"]):
        job_id = _check_job(job, i)
        if job_id in ids:
            raise ConfigError(f"job id {job_id!r} is used more than once")
        ids.add(job_id)


# ---- internals ------------------------------------------------------------------


def _check_job(job: Any, index: int) -> str:
    if not isinstance(job, dict):
        raise ConfigError(f"jobs[{index}] must be a mapping")
    module = job.get("module")
    if not (isinstance(module, str) and module.strip()):
        raise ConfigError(f"jobs[{index}]: 'module' must be a non-empty string")
    job_id = _job_id(job, index)

    trigger = job.get("trigger")
    if not isinstance(trigger, dict):
        raise ConfigError(f"job {job_id!r}: 'trigger' must be a mapping")
    kinds = [k for k in TRIGGER_KINDS if k in trigger]
    if len(kinds) != 1:
        raise ConfigError(f"job {job_id!r}: trigger needs exactly one of {', '.join(TRIGGER_KINDS)}")
    value = trigger[kinds[0]]
    expected = {"interval": (dict,), "cron": (str, dict), "date": (str,)}[kinds[0]]
    if not isinstance(value, expected) or (isinstance(value, str) and not value.strip()):
        raise ConfigError(f"job {job_id!r}: invalid {kinds[0]} trigger {value!r}")

    if not isinstance(job.get("kwargs", {}), dict):
        raise ConfigError(f"job {job_id!r}: 'kwargs' must be a mapping")
    for text_field in ("summary", "description"):
        if not isinstance(job.get(text_field, ""), str):
            raise ConfigError(f"job {job_id!r}: '{text_field}' must be a string")
    if "coalesce" in job:
        _as_bool(job["coalesce"], "coalesce", job_id)
    for name, minimum in _INT_MINIMUMS.items():
        if name in job:
            _as_int(job[name], name, job_id, minimum)
    return job_id


def _normalized(job: Any, index: int) -> Any:
    if not isinstance(job, dict):
        raise ConfigError(f"jobs[{index}] must be a mapping")
    out = dict(job)
    out["id"] = _job_id(job, index)
    if "coalesce" in out:
        out["coalesce"] = _as_bool(out["coalesce"], "coalesce", out["id"])
    for name, minimum in _INT_MINIMUMS.items():
        if name in out:
            out[name] = _as_int(out[name], name, out["id"], minimum)
    return out


def _job_id(job: dict[str, Any], index: int) -> str:
    for key in ("id", "name", "module"):
        value = job.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return f"job_{index}"


def _as_bool(value: Any, name: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"job {job_id!r}: '{name}' must be true or false, got {value!r}")


def _as_int(value: Any, name: str, job_id: str, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"job {job_id!r}: '{name}' must be an integer, got {value!r}") from err
    if number < minimum:
        raise ConfigError(f"job {job_id!r}: '{name}' must be >= {minimum}, got {number}")
    return number


def _parse_file(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e

    if path.lower().endswith((".yaml", ".yml")):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"{path} is not valid YAML: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path} is not valid JSON: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data
