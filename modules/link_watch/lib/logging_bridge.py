"""
Structured activity/error records for link_watch.

Records go to the service JSONL writer. If the write itself fails (disk full,
unwritable LOG_DIR) the record is emitted through stdlib logging instead, so a
logging problem never aborts a run.
"""

from __future__ import annotations

import logging
from typing import Any

from service import logging_utils

_activity_log = logging.getLogger("link_watch.activity")
_error_log = logging.getLogger("link_watch.error")

# Top-level keys dropped before anything is written, on top of the service
# writer's own substring redaction.
_SECRET_KEYS = frozenset({
    "password",
    "smtp_password",
    "aws_secret_access_key",
    "aws_session_token",
})


def _clean(record: dict[str, Any]) -> dict[str, Any]:
    return {k: ("***REDACTED***" if str(k).lower() in _SECRET_KEYS else v) for k, v in record.items()}


def activity(record: dict[str, Any]) -> None:
    payload = _clean(record)
    try:
        logging_utils.write_activity_log(payload)
    except OSError:
        _activity_log.debug("activity log write failed", exc_info=True)
        _activity_log.info("%s", payload)


def error(record: dict[str, Any]) -> None:
    payload = _clean(record)
    try:
        logging_utils.write_error_log(payload)
    except OSError:
        _error_log.debug("error log write failed", exc_info=True)
        _error_log.error("%s", payload)
