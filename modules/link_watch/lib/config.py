from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from service.emailer import SmtpSettings, resolve_smtp_settings

from .fingerprint import DEFAULT_LENGTH
from .http_client import DEFAULT_USER_AGENT
from .models import SiteSpec
from .utils import as_str_list, truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env or the sites file cannot form a valid Settings."""


_BACKENDS = ("sqs", "file")
_CSS_KEYS = ("selector", "elementSelector")
_XPATH_KEY = "xpath"


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for a 'link_watch' run.

    Built once from the job kwargs (the runner has already replaced *_env values
    with the environment value) and passed down to the engine; nothing below the
    engine reads the environment.
    """

    sites_path: str = ""
    sites: list[SiteSpec] = field(default_factory=list, repr=False)

    # Durable state
    state_backend: str = "sqs"
    queue_name: str = ""
    queue_url: str = ""
    aws_region: str | None = None
    state_path: str = "/app/local/state/link_watch.json"
    wait_time_seconds: int = 2
    visibility_timeout: int = 0

    # Dedup policy
    fingerprint_length: int = DEFAULT_LENGTH
    ttl_days: int = 30

    # Fetching
    max_parallel: int = 8
    fail_fast: bool = False
    request_timeout: float = 15.0
    verify_tls: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    # Email
    email_from: str = ""
    email_to: list[str] = field(default_factory=list)
    email_subject: str = "Link Watch: new links"
    smtp: SmtpSettings | None = field(default=None, repr=False)

    # Special-run flags
    ingest_only_no_email: bool = False
    email_all_even_if_seen: bool = False

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            sites_path: str                     # REQUIRED, JSON list of site specs
            state_backend: "sqs" | "file" = "sqs"
            queue_name / queue_url: str         # sqs backend (one of them required)
            aws_region: str
            state_path: str                     # file backend
            wait_time_seconds: int = 2
            visibility_timeout: int = 0
            fingerprint_length: int = 10
            ttl_days: int = 30
            max_parallel: int = 8
            fail_fast: bool = false
            request_timeout: float = 15.0
            verify_tls: bool = true
            email_from: str                     # defaults to SMTP_FROM
            email_to: str | list[str]           # comma-separated string accepted
            email_subject: str

            # Special runs
            ingest_only_no_email: bool = false
            email_all_even_if_seen: bool = false
        """
        kw = dict(kwargs or {})

        sites_path = str(kw.get("sites_path") or "").strip()
        if not sites_path:
            raise ConfigError("Missing 'sites_path' (JSON file listing the pages to scrape).")

        smtp = resolve_smtp_settings()

        try:
            settings = cls(
                sites_path=sites_path,
                state_backend=str(kw.get("state_backend") or "sqs").strip().lower(),
                queue_name=str(kw.get("queue_name") or "").strip(),
                queue_url=str(kw.get("queue_url") or "").strip(),
                aws_region=(str(kw.get("aws_region")).strip() or None) if kw.get("aws_region") else None,
                state_path=str(kw.get("state_path") or "/app/local/state/link_watch.json"),
                wait_time_seconds=int(_default(kw.get("wait_time_seconds"), 2)),
                visibility_timeout=int(_default(kw.get("visibility_timeout"), 0)),
                fingerprint_length=int(_default(kw.get("fingerprint_length"), DEFAULT_LENGTH)),
                ttl_days=int(_default(kw.get("ttl_days"), 30)),
                max_parallel=int(_default(kw.get("max_parallel"), 8)),
                fail_fast=truthy(kw.get("fail_fast")),
                request_timeout=float(_default(kw.get("request_timeout"), 15.0)),
                verify_tls=truthy(_default(kw.get("verify_tls"), True)),
                user_agent=str(kw.get("user_agent") or DEFAULT_USER_AGENT),
                email_from=str(kw.get("email_from") or smtp.default_from_addr or "").strip(),
                email_to=as_str_list(kw.get("email_to")),
                email_subject=str(kw.get("email_subject") or cls.email_subject),
                smtp=smtp,
                ingest_only_no_email=truthy(kw.get("ingest_only_no_email")),
                email_all_even_if_seen=truthy(kw.get("email_all_even_if_seen")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid link_watch setting: {e}") from e

        settings.sites = load_sites(settings.sites_path)
        _validate_settings(settings)
        return settings


# -----------------------------
# Sites file
# -----------------------------
def load_sites(path: str) -> list[SiteSpec]:
    """
    Read and parse the sites file. Accepts either a bare list or {"sites": [...]}.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"link_watch sites file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"link_watch sites file is invalid JSON: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read sites file: {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("sites")
    sites = parse_sites(data)
    if not sites:
        raise ConfigError(f"No sites found in {path}")
    return sites


def parse_sites(value: Any) -> list[SiteSpec]:
    """
    Parse a flat list into SiteSpec objects.
    Accepts: [{"url": "...", "selector": "...", "terms": ["..."]}, ...]
    "selector" and "elementSelector" hold CSS selectors; "xpath" holds an XPath
    expression. A site names exactly one of them.
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError("Expected a list of site objects.")
    out: list[SiteSpec] = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigError(f"Site[{i}] must be an object.")
        url = str(item.get("url") or "").strip()
        css = next((str(item[k]).strip() for k in _CSS_KEYS if item.get(k)), "")
        xpath = str(item.get(_XPATH_KEY) or "").strip()
        if css and xpath:
            raise ConfigError(f"Site[{i}] sets both a CSS selector and 'xpath'; pick one.")
        selector, kind = (xpath, "xpath") if xpath else (css, "css")
        terms = item.get("terms")
        if not url or not selector:
            raise ConfigError(f"Site[{i}] requires 'url' and one of 'selector' or 'xpath'.")
        if not isinstance(terms, list) or not all(isinstance(t, str) for t in terms):
            raise ConfigError(f"Site[{i}].terms must be a list of strings.")
        keywords = frozenset(t.strip() for t in terms if t.strip())
        if not keywords:
            raise ConfigError(f"Site[{i}] needs at least one non-empty term.")
        out.append(SiteSpec(address=url, selector=selector, keywords=keywords, kind=kind))
    return out


# -----------------------------
# Helpers
# -----------------------------
def _default(v: Any, default: Any) -> Any:
    return default if v is None or v == "" else v


def _validate_settings(s: Settings) -> None:
    if s.state_backend not in _BACKENDS:
        raise ConfigError(f"'state_backend' must be one of {_BACKENDS} (got {s.state_backend!r}).")
    if s.state_backend == "sqs" and not (s.queue_url or s.queue_name):
        raise ConfigError("The sqs backend needs 'queue_url' or 'queue_name'.")
    if s.state_backend == "file" and not s.state_path.strip():
        raise ConfigError("The file backend needs a non-empty 'state_path'.")

    if not 1 <= s.fingerprint_length <= 64:
        raise ConfigError("'fingerprint_length' must be between 1 and 64.")
    if s.ttl_days < 0:
        raise ConfigError("'ttl_days' must be >= 0.")
    if s.max_parallel <= 0:
        raise ConfigError("'max_parallel' must be >= 1.")
    if s.request_timeout <= 0:
        raise ConfigError("'request_timeout' must be > 0.")
    if not 0 <= s.wait_time_seconds <= 20:
        raise ConfigError("'wait_time_seconds' must be between 0 and 20.")

    if s.ingest_only_no_email and s.email_all_even_if_seen:
        raise ConfigError("'ingest_only_no_email' and 'email_all_even_if_seen' are mutually exclusive.")
    if not s.ingest_only_no_email:
        if not s.email_to:
            raise ConfigError("'email_to' is required unless 'ingest_only_no_email' is set.")
        if not s.email_from:
            raise ConfigError("No from address resolved. Set 'email_from' or SMTP_FROM.")
