# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from datetime import tzinfo as TzInfo
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

log = logging.getLogger(__name__)

DEFAULT_WORKERS = 4

_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")
_INTERVAL_KEYS = {*_INTERVAL_UNITS, "jitter", "timezone", "start_date", "end_date"}
_CRON_KEYS = {"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "jitter"}


@dataclass(frozen=True)
class JobSpec:
    id: str
    module: str
    trigger: BaseTrigger
    kwargs: dict[str, Any] = field(default_factory=dict)
    timeout_sec: int | None = None
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int | None = None
    summary: str | None = None

    @classmethod
    def from_config(cls, job: dict[str, Any], tz: TzInfo) -> JobSpec:
        module = job.get("module")
        if not module:
            raise ValueError("job is missing 'module'")
        if "trigger" not in job:
            raise ValueError(f"job {module!r} is missing 'trigger'")
        return cls(
            id=str(job.get("id") or module),
            module=module,
            trigger=_build_trigger(job["trigger"], tz),
            kwargs=dict(job.get("kwargs") or {}),
            timeout_sec=_opt_int(job.get("timeout_sec")),
            max_instances=_opt_int(job.get("max_instances")) or 1,
            coalesce=bool(job.get("coalesce", True)),
            misfire_grace_time=_opt_int(job.get("misfire_grace_time")),
            summary=job.get("summary") or job.get("description"),
        )


class SchedulerController:
    """Lifecycle handle returned by start(); used by `cli serve`."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            log.info("stopping scheduler")
            # don't wait: a run in flight finishes on its worker thread
            self._scheduler.shutdown(wait=False)
        self._stopped.set()

    def join(self, timeout: float | None = None) -> bool:
        return self._stopped.wait(timeout=timeout)

    def get_job_ids(self) -> Iterator[str]:
        return (job.id for job in self._scheduler.get_jobs())


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load and validate the service config, register every job and start a
    BackgroundScheduler. Jobs default to coalesce=True and max_instances=1 so a
    slow link watch run is never overlapped by its next trigger.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _scheduler_timezone(cfg.get("timezone"))

    workers = _opt_int(cfg.get("executor_workers")) or DEFAULT_WORKERS
    sched = BackgroundScheduler(
        timezone=tz,
        executors={"default": ThreadPoolExecutor(workers)},
        jobstores={"default": MemoryJobStore()},
        job_defaults={"coalesce": True, "max_instances": 1},
    )

    for job in cfg["jobs"]:
        try:
            spec = JobSpec.from_config(job, tz)
        except ValueError:
            log.exception("skipping job %r: bad definition", job.get("id"))
            continue
        sched.add_job(
            func=_JobRun(spec),
            trigger=spec.trigger,
            id=spec.id,
            max_instances=spec.max_instances,
            coalesce=spec.coalesce,
            misfire_grace_time=spec.misfire_grace_time,
            replace_existing=True,
        )
        log.debug("job %s -> %s (%s)", spec.id, spec.module, spec.trigger)

    sched.start()
    log.info("scheduler running with %d job(s) in %s", len(sched.get_jobs()), tz)
    return SchedulerController(sched)


class _JobRun:
    """
    The callable APScheduler fires. Runs the module through the runner and
    writes one job_run activity record. Failures are logged, never retried;
    the next trigger is the retry.
    """

    def __init__(self, spec: JobSpec) -> None:
        self.spec = spec

    def __call__(self) -> None:
        spec = self.spec
        t0 = time.monotonic()
        log.info("job %s: starting %s", spec.id, spec.module)
        status = "ok"
        try:
            meta, _run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                trigger_type="scheduled",
                job_context={"job_id": spec.id, "now_iso": datetime.now(timezone.utc).isoformat()},
                timeout_sec=spec.timeout_sec,
            )
            log.info("job %s: %s", spec.id, (meta or {}).get("message", "done"))
        except Exception:
            status = "error"
            log.exception("job %s failed", spec.id)
        self._record(status, time.monotonic() - t0)

    def _record(self, status: str, elapsed: float) -> None:
        try:
            write_activity_log({
                "source": "scheduler",
                "event": "job_run",
                "job_id": self.spec.id,
                "module": self.spec.module,
                "status": status,
                "duration_ms": int(elapsed * 1000),
                "summary": self.spec.summary,
            })
        except OSError:
            log.warning("could not write job_run record for %s", self.spec.id, exc_info=True)


# ---- triggers -----------------------------------------------------------------


def _build_trigger(trig_def: dict[str, Any], tz: TzInfo | str) -> BaseTrigger:
    """
    Turn a config trigger block into an APScheduler trigger.

      {"interval": {"hours": 6}}                  weeks/days/hours/minutes/seconds, jitter,
                                                  start_date, end_date, timezone
      {"cron": "0 */6 * * *"}                     5-field crontab
      {"cron": {"hour": "7,19", "day_of_week": "mon-fri"}}
      {"date": "2025-03-01T08:00:00"}             one shot; naive times use the scheduler tz

    Raises ValueError for anything else.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger must be an object")
    kinds = [k for k in _BUILDERS if trig_def.get(k) is not None]
    if len(kinds) != 1:
        raise ValueError(f"trigger needs exactly one of {sorted(_BUILDERS)}, got {sorted(trig_def)}")
    kind = kinds[0]
    default_tz = _scheduler_timezone(tz) if isinstance(tz, str) else tz
    return _BUILDERS[kind](trig_def[kind], default_tz)


def _interval_trigger(spec: Any, tz: TzInfo) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object like {'hours': 6}")
    extra = set(spec) - _INTERVAL_KEYS
    if extra:
        raise ValueError(f"unsupported interval field(s): {sorted(extra)}")

    kwargs: dict[str, Any] = {}
    for unit in (*_INTERVAL_UNITS, "jitter"):
        if unit not in spec:
            continue
        try:
            amount = int(spec[unit])
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{unit} must be an integer, got {spec[unit]!r}") from err
        if amount < 0:
            raise ValueError(f"interval.{unit} cannot be negative")
        if amount:
            kwargs[unit] = amount
    if not any(u in kwargs for u in _INTERVAL_UNITS):
        raise ValueError("interval must be longer than zero")
    for bound in ("start_date", "end_date"):
        if bound in spec:
            kwargs[bound] = spec[bound]
    return IntervalTrigger(timezone=_zone(spec.get("timezone")) or tz, **kwargs)


def _cron_trigger(spec: Any, tz: TzInfo) -> CronTrigger:
    if isinstance(spec, str):
        if len(spec.split()) != 5:
            raise ValueError(f"crontab needs 5 fields: {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")
    extra = set(spec) - _CRON_KEYS
    if extra:
        raise ValueError(f"unsupported cron field(s): {sorted(extra)}")
    fields = {k: spec.get(k) for k in ("hour", "day", "day_of_week", "month", "jitter")}
    return CronTrigger(
        second=spec.get("second", 0),
        minute=spec.get("minute", 0),
        timezone=_zone(spec.get("timezone")) or tz,
        **fields,
    )


def _date_trigger(spec: Any, tz: TzInfo) -> DateTrigger:
    try:
        when = datetime.fromisoformat(str(spec).replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"date trigger is not ISO-8601: {spec!r}") from e
    if when.tzinfo is None:
        when = tz.localize(when) if hasattr(tz, "localize") else when.replace(tzinfo=tz)
    return DateTrigger(run_date=when, timezone=when.tzinfo)


_BUILDERS: dict[str, Callable[[Any, TzInfo], BaseTrigger]] = {
    "interval": _interval_trigger,
    "cron": _cron_trigger,
    "date": _date_trigger,
}


# ---- helpers ------------------------------------------------------------------


def _scheduler_timezone(name: str | None):
    """APScheduler 3.x wants pytz zones: the config value, then $TZ, then UTC."""
    name = name or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        log.warning("unknown timezone %r, using UTC", name)
        return pytz.UTC


def _zone(name: Any):
    if not name:
        return None
    if isinstance(name, TzInfo):
        return name
    try:
        return pytz.timezone(str(name))
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"unknown timezone {name!r}") from e


def _opt_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
