from __future__ import annotations

from collections.abc import Callable, Iterable
from urllib.parse import urljoin

import lxml.html
from bs4 import BeautifulSoup
from lxml import etree

from .http_client import HttpClient
from .models import Element

SELECTOR_KINDS = ("css", "xpath")


class FetchError(RuntimeError):
    """Raised when a page cannot be visited (network, HTTP status or selector problem)."""

    def __init__(self, address: str, message: str):
        super().__init__(f"{address}: {message}")
        self.address = address


class PageFetcher:
    """
    Fetch one page and hand every element matching a selector to a callback.

    CSS selectors go through BeautifulSoup (soupsieve); XPath expressions are
    evaluated with lxml. Visits are independent, so one PageFetcher (and its
    HttpClient session) is shared by all scrape threads.
    """

    def __init__(self, client: HttpClient | None = None, *, parser: str = "html5lib"):
        self._client = client or HttpClient()
        self._parser = parser

    def visit(self, url: str, selector: str, on_element: Callable[[Element], None], kind: str = "css") -> int:
        """
        GET `url`, select elements, and call `on_element` once per element.
        Relative hrefs are resolved against `url`; elements without an href are skipped.

        Returns the number of elements passed to the callback.
        Raises FetchError on any fetch or parse failure.
        """
        if kind not in SELECTOR_KINDS:
            raise FetchError(url, f"unknown selector kind {kind!r}")
        try:
            html = self._client.get_text(url)
        except Exception as e:
            raise FetchError(url, f"fetch failed: {e}") from e

        pairs = self._xpath(url, html, selector) if kind == "xpath" else self._css(url, html, selector)
        n = 0
        for text, href in pairs:
            href = (href or "").strip()
            if not href:
                continue
            on_element(Element(text=text, href=urljoin(url, href)))
            n += 1
        return n

    def _css(self, url: str, html: str, selector: str) -> Iterable[tuple[str, str]]:
        soup = BeautifulSoup(html, self._parser)
        try:
            matched = soup.select(selector)
        except Exception as e:
            # soupsieve raises SelectorSyntaxError (a ValueError) for bad selectors
            raise FetchError(url, f"invalid selector {selector!r}: {e}") from e
        return [(el.get_text(" ", strip=True), str(el.get("href") or "")) for el in matched]

    def _xpath(self, url: str, html: str, selector: str) -> Iterable[tuple[str, str]]:
        try:
            # bytes plus a fixed encoding, so an XML encoding declaration is accepted
            doc = lxml.html.fromstring(html.encode("utf-8"), parser=lxml.html.HTMLParser(encoding="utf-8"))
        except (etree.ParserError, ValueError) as e:
            raise FetchError(url, f"unparsable page: {e}") from e
        try:
            matched = doc.xpath(selector)
        except etree.XPathError as e:
            raise FetchError(url, f"invalid xpath {selector!r}: {e}") from e
        if not isinstance(matched, list):
            return []
        # text nodes and attribute values carry no href
        return [
            (" ".join(el.text_content().split()), el.get("href") or "")
            for el in matched
            if isinstance(el, lxml.html.HtmlElement)
        ]

    def close(self) -> None:
        self._client.close()
