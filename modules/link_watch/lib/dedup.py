"""
Seen-set maintenance: TTL pruning, filtering of already-reported links and the
merge that produces the next persisted state. All functions are pure.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from .fingerprint import DEFAULT_LENGTH, fingerprint
from .models import ScrapeResult, SeenSet
from .state_store import StoreError
from .utils import format_day, parse_day

DEFAULT_TTL_DAYS = 30


def prune_expired(seen: SeenSet, now: date, ttl_days: int = DEFAULT_TTL_DAYS) -> SeenSet:
    """
    Keep entries no older than `ttl_days` (inclusive). Expired links become
    eligible to be reported again if they are rediscovered.

    Raises StoreError if any stored date is not 'YYYY-MM-DD'.
    """
    kept: SeenSet = {}
    for fp, day in seen.items():
        try:
            d = parse_day(day)
        except (TypeError, ValueError) as e:
            raise StoreError(f"error parsing date {day!r} for entry {fp!r}: {e}") from e
        if (now - d).days <= ttl_days:
            kept[fp] = day
    return kept


def remove_seen(fresh: ScrapeResult, seen: SeenSet, length: int = DEFAULT_LENGTH) -> ScrapeResult:
    """Drop every fresh link whose fingerprint is already in `seen`."""
    if not seen:
        return fresh
    return {url: text for url, text in fresh.items() if fingerprint(url, length) not in seen}


def merge_seen(
    pruned: SeenSet,
    sent: Iterable[str],
    today: date,
    length: int = DEFAULT_LENGTH,
) -> SeenSet:
    """Next state: the pruned seen-set plus every sent URL's fingerprint dated today."""
    stamp = format_day(today)
    merged = dict(pruned)
    for url in sent:
        merged[fingerprint(url, length)] = stamp
    return merged
