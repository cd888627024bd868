from __future__ import annotations

from dataclasses import dataclass, field

# href -> anchor text; keys are unique, last writer wins.
ScrapeResult = dict[str, str]

# fingerprint -> last-seen date ("YYYY-MM-DD").
SeenSet = dict[str, str]


@dataclass(frozen=True)
class SiteSpec:
    """
    One page to scrape.
    - address: page URL (only this page is fetched, no crawling)
    - selector: expression picking the anchor elements to inspect
    - kind: "css" (BeautifulSoup select) or "xpath" (lxml)
    - keywords: case-insensitive substrings; an anchor matches if its text contains any
    """

    address: str
    selector: str
    keywords: frozenset[str] = field(default_factory=frozenset)
    kind: str = "css"

    def matches(self, text: str) -> bool:
        low = (text or "").lower()
        return any(k.lower() in low for k in self.keywords)


@dataclass(frozen=True)
class Element:
    """A matched DOM element as handed to scrape callbacks."""

    text: str
    href: str


@dataclass(frozen=True)
class SiteFailure:
    address: str
    error: str


@dataclass
class ScrapeOutcome:
    """
    Result bundle produced by one aggregation pass.
    - results: merged matches across all sites (NOT filtered for 'new').
    - failures: sites that could not be fetched (only when failures are non-fatal).
    - found_by_site: number of matches each site contributed before merging.
    """

    results: ScrapeResult = field(default_factory=dict)
    failures: list[SiteFailure] = field(default_factory=list)
    found_by_site: dict[str, int] = field(default_factory=dict)
