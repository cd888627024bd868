from __future__ import annotations

import json
from typing import Any

from .logging_bridge import error as log_error
from .models import SeenSet
from .queues import FileQueue, SqsQueue


class StoreError(RuntimeError):
    """Raised when the seen-set cannot be read, decoded, encoded or written."""


class StateStore:
    """
    Treats a single-slot queue as one persistent variable holding the SeenSet.

    load_seen() receives the pending record and deletes it (receive-once);
    save_seen() puts the replacement (replace-once). There is only ever one
    writer, so no versioning is needed.
    """

    def __init__(self, queue: Any):
        self._queue = queue

    def load_seen(self) -> SeenSet:
        """
        Consume the pending SeenSet record, or return {} if none is pending.
        The record is only deleted after it decodes cleanly.
        """
        try:
            msg = self._queue.receive_one()
        except Exception as e:
            log_error({"component": "link_watch.state_store", "op": "receive", "error": repr(e)})
            raise StoreError(f"error receiving state record: {e}") from e
        if msg is None:
            return {}

        seen = decode_seen(msg.body)

        try:
            self._queue.delete(msg.handle)
        except Exception as e:
            log_error({"component": "link_watch.state_store", "op": "delete", "error": repr(e)})
            raise StoreError(f"error deleting state record: {e}") from e
        return seen

    def save_seen(self, seen: SeenSet) -> None:
        body = encode_seen(seen)
        try:
            self._queue.send(body)
        except Exception as e:
            log_error({"component": "link_watch.state_store", "op": "send", "error": repr(e)})
            raise StoreError(f"error sending state record: {e}") from e


def decode_seen(body: str) -> SeenSet:
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise StoreError(f"state record is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise StoreError(f"state record must be a JSON object (got {type(data).__name__})")
    for k, v in data.items():
        if not isinstance(v, str):
            raise StoreError(f"state entry {k!r} has a non-string date: {v!r}")
    return data


def encode_seen(seen: SeenSet) -> str:
    try:
        return json.dumps(seen, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StoreError(f"error encoding state record: {e}") from e


def open_store(settings: Any) -> StateStore:
    """Build the StateStore for the configured backend."""
    if settings.state_backend == "file":
        return StateStore(FileQueue(settings.state_path))
    try:
        queue = SqsQueue(
            queue_url=settings.queue_url,
            queue_name=settings.queue_name,
            region=settings.aws_region,
            wait_time_seconds=settings.wait_time_seconds,
            visibility_timeout=settings.visibility_timeout,
        )
    except Exception as e:
        raise StoreError(f"error opening queue: {e}") from e
    return StateStore(queue)
