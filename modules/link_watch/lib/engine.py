"""
Engine for one link watch cycle: load state, prune, scrape, dedupe, notify, save.

Features:
  - Concurrent scraping via `aggregator.scrape`
  - TTL-bounded dedup state round-tripped through a single-slot queue
  - Special modes: `ingest_only_no_email`, `email_all_even_if_seen`
  - Dependency injection for testability (`fetcher`, `store`, `today`)
  - Stage-tagged failures and structured logging via `logging_bridge`

Ordering: the email goes out before the new state is written. If anything
after the state was consumed fails, the pruned prior state is written back
(without this run's fingerprints) so unsent links are evaluated again next run.
A failed final write is not followed by a restore: the send may have been
accepted, and a second record would break the single-slot invariant.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

from . import aggregator, logging_bridge, notifier
from .config import Settings
from .dedup import merge_seen, prune_expired, remove_seen
from .fetcher import PageFetcher
from .http_client import HttpClient
from .models import SeenSet
from .state_store import StateStore, open_store

_COMPONENT = "link_watch.engine"


class StageError(RuntimeError):
    """A pipeline stage failed. `stage` names it; the original error is `__cause__`."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage


@contextmanager
def _stage(name: str, durations_us: dict[str, int]) -> Iterator[None]:
    t0 = time.perf_counter_ns()
    try:
        yield
    except StageError:
        raise
    except Exception as e:
        logging_bridge.error({
            "component": _COMPONENT,
            "op": "stage_failed",
            "stage": name,
            "error": repr(e),
        })
        raise StageError(name, e) from e
    finally:
        durations_us[name] = int((time.perf_counter_ns() - t0) // 1000)


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    *,
    fetcher: PageFetcher | None = None,
    store: StateStore | None = None,
    today: date | None = None,
) -> dict:
    """
    Run one complete cycle.

    Args:
        settings: validated configuration (sites, state backend, email, flags).
        fetcher: optional page fetcher override (tests); built from settings otherwise.
        store: optional state store override (tests); built from settings otherwise.
        today: optional date override; defaults to the local calendar date.

    Returns:
        meta dict describing the run (counts, failures, whether an email was sent).

    Raises:
        StageError wrapping the ConfigError/FetchError/StoreError/TransportError
        of the stage that failed.
    """
    start_ns = time.perf_counter_ns()
    today = today or date.today()
    durations_us: dict[str, int] = {}

    own_fetcher = fetcher is None
    if fetcher is None:
        fetcher = PageFetcher(
            HttpClient(
                timeout=settings.request_timeout,
                user_agent=settings.user_agent,
                verify_tls=settings.verify_tls,
                pool_maxsize=settings.max_parallel,
            )
        )

    logging_bridge.activity({
        "component": _COMPONENT,
        "op": "start",
        "sites": [s.address for s in settings.sites],
        "state_backend": settings.state_backend,
        "flags": {
            "fail_fast": settings.fail_fast,
            "ingest_only_no_email": settings.ingest_only_no_email,
            "email_all_even_if_seen": settings.email_all_even_if_seen,
        },
    })

    try:
        with _stage("load_state", durations_us):
            if store is None:
                store = open_store(settings)
            seen_before = store.load_seen()

        # From here on the stored record has been consumed.
        restore_to: SeenSet = seen_before
        saved = False
        sent_state = False
        try:
            with _stage("prune", durations_us):
                pruned = prune_expired(seen_before, today, settings.ttl_days)
            restore_to = pruned

            with _stage("scrape", durations_us):
                outcome = aggregator.scrape(
                    settings.sites,
                    fetcher=fetcher,
                    max_parallel=settings.max_parallel,
                    fail_fast=settings.fail_fast,
                )

            with _stage("dedup", durations_us):
                new = remove_seen(outcome.results, pruned, settings.fingerprint_length)

            to_send = outcome.results if settings.email_all_even_if_seen else new
            message_id: str | None = None
            if to_send and not settings.ingest_only_no_email:
                with _stage("notify", durations_us):
                    message_id = notifier.notify(
                        to_send,
                        sender=settings.email_from,
                        recipients=settings.email_to,
                        subject=settings.email_subject,
                        smtp=settings.smtp,
                    )

            with _stage("save_state", durations_us):
                seen_after = merge_seen(pruned, new.keys(), today, settings.fingerprint_length)
                sent_state = True
                store.save_seen(seen_after)
            saved = True
        finally:
            # A failed send may still have landed; restoring could leave two records.
            if not saved and not sent_state and seen_before:
                _restore(store, restore_to)
    finally:
        if own_fetcher:
            fetcher.close()

    total_us = int((time.perf_counter_ns() - start_ns) // 1000)
    msg = _summary_message(len(outcome.results), len(new), len(outcome.failures))

    meta = {
        "message": msg,
        "subject": settings.email_subject,
        "found_total": len(outcome.results),
        "new_total": len(new),
        "sent_total": len(to_send) if message_id else 0,
        "emailed": message_id is not None,
        "email_message_id": message_id,
        "seen_before": len(seen_before),
        "seen_pruned": len(seen_before) - len(pruned),
        "seen_after": len(seen_after),
        "found_by_site": dict(outcome.found_by_site),
        "failures": [{"site": f.address, "error": f.error} for f in outcome.failures],
        "durations_us": {**durations_us, "_total_us": total_us},
        "ingest_only_no_email": settings.ingest_only_no_email,
        "email_all_even_if_seen": settings.email_all_even_if_seen,
    }

    logging_bridge.activity({
        "component": _COMPONENT,
        "op": "summary" if meta["emailed"] else ("ingest_only" if settings.ingest_only_no_email else "no_new"),
        "found_total": meta["found_total"],
        "new_total": meta["new_total"],
        "seen_before": meta["seen_before"],
        "seen_after": meta["seen_after"],
        "failures": meta["failures"],
        "durations_us": durations_us,
        "total_us": total_us,
    })
    return meta


# =============================================================================
# HELPERS
# =============================================================================
def _restore(store: StateStore | None, seen: SeenSet) -> None:
    """Best-effort write-back of the prior state after a failed run."""
    if store is None:
        return
    try:
        store.save_seen(seen)
        logging_bridge.activity({"component": _COMPONENT, "op": "state_restored", "entries": len(seen)})
    except Exception as e:
        # The original failure is already propagating; record this one alongside it.
        logging_bridge.error({"component": _COMPONENT, "op": "restore_failed", "error": repr(e)})


def _summary_message(found: int, new: int, failed_sites: int) -> str:
    """
    Friendly one-liner like:
        "12 matching links, 3 new (1 site failed)"
    """
    msg = f"{found} matching links, {new} new"
    if failed_sites:
        msg += f" ({failed_sites} site{'s' if failed_sites != 1 else ''} failed)"
    return msg
