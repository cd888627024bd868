from __future__ import annotations

import html
from datetime import date, datetime
from typing import Any

# Canonical on-disk date format for seen-set entries.
DATE_FORMAT = "%Y-%m-%d"


def esc(s: str | None) -> str:
    """
    Escape text for HTML contexts (anchor text, href values). Do NOT wrap or add tags.
    """
    if s is None:
        return ""
    return html.escape(str(s), quote=True)


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def parse_day(value: str) -> date:
    """Parse a 'YYYY-MM-DD' string. Raises ValueError on anything else."""
    return datetime.strptime(value, DATE_FORMAT).date()


def format_day(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def as_str_list(value: Any) -> list[str]:
    """
    Accept a comma-separated string or a list and return non-empty stripped strings.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    if isinstance(value, (list, tuple)):
        return [str(s).strip() for s in value if str(s).strip()]
    return [str(value).strip()] if str(value).strip() else []
