"""
Concurrent multi-site scraping.

One task per SiteSpec runs on a bounded thread pool. Every task writes its
keyword matches into a single shared ResultMap; the map's lock is held for one
write at a time and never across a network call.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from . import logging_bridge
from .fetcher import FetchError, PageFetcher
from .models import Element, ScrapeOutcome, ScrapeResult, SiteFailure, SiteSpec


class ResultMap:
    """Mutex-guarded href -> text mapping shared by the scrape threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: ScrapeResult = {}

    def put(self, href: str, text: str) -> None:
        with self._lock:
            self._data[href] = text

    def snapshot(self) -> ScrapeResult:
        with self._lock:
            return dict(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def scrape(
    specs: Sequence[SiteSpec],
    *,
    fetcher: PageFetcher,
    max_parallel: int = 8,
    fail_fast: bool = False,
) -> ScrapeOutcome:
    """
    Scrape every site concurrently and merge keyword matches into one mapping.

    Args:
        specs: pages to visit; each is an independent task.
        fetcher: shared page fetcher (anything with `visit(url, selector, callback, kind=...)`).
        max_parallel: upper bound on simultaneous in-flight fetches.
        fail_fast: if True, any site failure raises FetchError once all tasks
            have finished. If False, failures are collected on the outcome and
            only a run where every site failed raises.

    Returns:
        ScrapeOutcome with merged results, per-site failures and match counts.
    """
    results = ResultMap()
    found_by_site: dict[str, int] = {}
    failures: list[SiteFailure] = []
    first_error: FetchError | None = None

    if not specs:
        return ScrapeOutcome()

    def _run_site(spec: SiteSpec) -> tuple[str, int, int]:
        t0 = time.perf_counter_ns()
        hits = 0

        def _on_element(el: Element) -> None:
            nonlocal hits
            if spec.matches(el.text):
                results.put(el.href, el.text)
                hits += 1

        fetcher.visit(spec.address, spec.selector, _on_element, kind=spec.kind)
        return (spec.address, hits, int((time.perf_counter_ns() - t0) // 1000))

    with ThreadPoolExecutor(
        max_workers=min(len(specs), max_parallel), thread_name_prefix="scrape"
    ) as pool:
        futures = {pool.submit(_run_site, spec): spec for spec in specs}
        for fut in as_completed(futures):
            spec = futures[fut]
            try:
                address, hits, dt_us = fut.result()
            except Exception as e:
                err = e if isinstance(e, FetchError) else FetchError(spec.address, repr(e))
                if first_error is None:
                    first_error = err
                failures.append(SiteFailure(address=spec.address, error=str(err)))
                logging_bridge.error({
                    "component": "link_watch.aggregator",
                    "op": "site_failed",
                    "site": spec.address,
                    "error": repr(e),
                })
                continue
            found_by_site[address] = hits
            logging_bridge.activity({
                "component": "link_watch.aggregator",
                "op": "site_done",
                "site": address,
                "matches": hits,
                "duration_us": dt_us,
            })

    if first_error is not None and (fail_fast or len(failures) == len(specs)):
        raise first_error

    return ScrapeOutcome(results=results.snapshot(), failures=failures, found_by_site=found_by_site)
