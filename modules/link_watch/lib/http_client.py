# link_watch/http_client.py
from __future__ import annotations

import logging
from typing import Any

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "LinkWatch/0.1 (+https://example.invalid)"


class HttpClient:
    """
    One requests.Session shared by every scrape thread.

    Each request carries `timeout`, so an unresponsive site fails instead of
    stalling the run. Retries are off unless asked for; the next scheduled run
    is the retry.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        *,
        verify_tls: bool = True,
        retries: int = 0,
        pool_maxsize: int = 8,
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers["User-Agent"] = user_agent
        self.session.verify = verify_tls
        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        adapter = HTTPAdapter(
            max_retries=Retry(
                total=retries,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=frozenset({"GET", "HEAD"}),
                raise_on_status=False,
            ),
            pool_connections=pool_maxsize,
            pool_maxsize=pool_maxsize,
        )
        for scheme in ("http://", "https://"):
            self.session.mount(scheme, adapter)

    def get_text(self, url: str, *, timeout: float | None = None, **kwargs: Any) -> str:
        """GET `url` and return the body as text. Non-2xx raises requests.HTTPError."""
        resp = self.session.get(url, timeout=timeout or self.timeout, **kwargs)
        resp.raise_for_status()
        if not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("error closing HTTP session", exc_info=True)
