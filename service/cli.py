"""
Command-line front end for the link watch service.

    python -m service.cli [--config PATH] run MODULE [--kwargs k=v ...] [--timeout S] [--print-meta]
    python -m service.cli [--config PATH] serve
    python -m service.cli [--config PATH] list-jobs
    python -m service.cli [--config PATH] validate-config

Exit status is 0 on success and 1 on any failure (130 when interrupted).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from service import config_schema, logging_utils, runner, scheduler

log = logging.getLogger("service.cli")

EXIT_OK = 0
EXIT_FAIL = 1
EXIT_INTERRUPTED = 130


def _setup_logging() -> None:
    if logging.getLogger().handlers:
        return
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _kwargs_from_pairs(pairs: Sequence[str]) -> dict[str, Any]:
    """
    ["ttl_days=7", "email_to=[\"a@x\"]"] -> {"ttl_days": 7, "email_to": ["a@x"]}

    Values are decoded as JSON when possible; anything else is kept verbatim.
    """
    parsed: dict[str, Any] = {}
    for item in pairs:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected key=value in --kwargs, got {item!r}")
        value = value.strip()
        try:
            parsed[key] = json.loads(value)
        except json.JSONDecodeError:
            parsed[key] = value
    return parsed


def _job_rows(cfg: dict[str, Any]) -> list[tuple[str, str, str]]:
    rows = []
    for job in cfg.get("jobs", []):
        trigger = json.dumps(job.get("trigger"), sort_keys=True)
        rows.append((str(job["id"]), str(job.get("module", "")), job.get("summary") or job.get("description") or trigger))
    return rows


def _print_columns(header: tuple[str, ...], rows: Iterable[tuple[str, ...]]) -> None:
    rows = [header, *rows]
    widths = [max(len(r[i]) for r in rows) for i in range(len(header))]
    for n, row in enumerate(rows):
        print("  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip())
        if n == 0:
            print("  ".join("-" * w for w in widths))


def _stamp() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


# ---- subcommands --------------------------------------------------------------


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = config_schema.load_config(args.config)
        config_schema.validate(cfg)
    except config_schema.ConfigError as e:
        log.error("invalid configuration: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return EXIT_FAIL
    print(f"OK: configuration is valid ({len(cfg['jobs'])} job(s)).")
    return EXIT_OK


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = config_schema.load_config(args.config)
    except config_schema.ConfigError as e:
        print(f"ERROR: cannot load configuration: {e}", file=sys.stderr)
        return EXIT_FAIL
    rows = _job_rows(cfg)
    if not rows:
        print("No jobs configured.")
        return EXIT_OK
    _print_columns(("JOB", "MODULE", "DETAILS"), rows)
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    kwargs = _kwargs_from_pairs(args.kwargs or [])
    t0 = time.monotonic()
    log.debug("adhoc run of %s kwargs=%s", args.module, kwargs)
    try:
        meta, run_id = runner.run_module_once(
            module=args.module,
            kwargs=kwargs,
            trigger_type="adhoc",
            timeout_sec=args.timeout,
        )
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        logging_utils.write_error_log({
            "where": "cli.run",
            "module": args.module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - t0) * 1000),
        })
        return EXIT_FAIL

    meta = meta or {}
    print(f"DONE: {meta.get('message', 'module finished')} (run {run_id})")
    if args.print_meta and meta:
        print(json.dumps(meta, indent=2, sort_keys=True, default=str))
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    """Run scheduled jobs until SIGINT/SIGTERM."""
    stopping = threading.Event()

    def _on_signal(signum, _frame):
        log.info("received signal %s, stopping", signum)
        stopping.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        controller = scheduler.start(config_path=args.config)
    except Exception:
        log.exception("scheduler failed to start")
        return EXIT_FAIL

    logging_utils.write_activity_log({"ts": _stamp(), "event": "serve_start", "jobs": list(controller.get_job_ids())})
    try:
        while not stopping.wait(timeout=0.5):
            pass
    finally:
        controller.stop()
        controller.join(timeout=10.0)
        logging_utils.write_activity_log({"ts": _stamp(), "event": "serve_stop"})
    return EXIT_OK


# ---- entry point --------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="link-watch", description="Link watch scheduler and runner.")
    parser.add_argument("--config", help="service config file (JSON or YAML); defaults to $CONFIG_PATH")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="run one module now")
    run.add_argument("module", help="import path of the module, e.g. modules.link_watch")
    run.add_argument("--kwargs", nargs="*", metavar="k=v", help="module kwargs; JSON values are decoded")
    run.add_argument("--timeout", type=int, help="give up after this many seconds")
    run.add_argument("--print-meta", action="store_true", help="dump the returned meta as JSON")
    run.set_defaults(func=cmd_run)

    sub.add_parser("serve", help="run the scheduler in the foreground").set_defaults(func=cmd_serve)
    sub.add_parser("list-jobs", help="show configured jobs").set_defaults(func=cmd_list_jobs)
    sub.add_parser("validate-config", help="check the service config").set_defaults(func=cmd_validate_config)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    _setup_logging()
    args = _build_parser().parse_args(argv)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
