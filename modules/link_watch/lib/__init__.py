# modules/link_watch/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .aggregator import ResultMap, scrape
from .config import ConfigError, Settings, load_sites
from .dedup import merge_seen, prune_expired, remove_seen
from .engine import StageError, run_once
from .fetcher import FetchError, PageFetcher
from .fingerprint import fingerprint
from .models import Element, ScrapeOutcome, ScrapeResult, SeenSet, SiteFailure, SiteSpec
from .notifier import TransportError, notify
from .state_store import StateStore, StoreError

__all__ = [
    "ConfigError",
    "Element",
    "FetchError",
    "PageFetcher",
    "ResultMap",
    "ScrapeOutcome",
    "ScrapeResult",
    "SeenSet",
    "Settings",
    "SiteFailure",
    "SiteSpec",
    "StageError",
    "StateStore",
    "StoreError",
    "TransportError",
    "fingerprint",
    "load_sites",
    "merge_seen",
    "notify",
    "prune_expired",
    "remove_seen",
    "run_once",
    "scrape",
]
