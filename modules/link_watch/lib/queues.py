"""
Single-slot queue backends used as the durable state substrate.

Both backends expose the same three operations:
    receive_one() -> QueueMessage | None
    delete(handle) -> None
    send(body) -> None
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any

import boto3

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueMessage:
    body: str
    handle: str


class SqsQueue:
    """Amazon SQS queue accessed through boto3."""

    def __init__(
        self,
        *,
        queue_url: str = "",
        queue_name: str = "",
        region: str | None = None,
        wait_time_seconds: int = 2,
        visibility_timeout: int = 0,
        client: Any = None,
    ):
        self._client = client or boto3.client("sqs", region_name=region)
        if not queue_url:
            if not queue_name:
                raise ValueError("SqsQueue needs queue_url or queue_name")
            queue_url = self._client.get_queue_url(QueueName=queue_name)["QueueUrl"]
        self.queue_url = queue_url
        self._wait = int(wait_time_seconds)
        self._visibility = int(visibility_timeout)

    def receive_one(self) -> QueueMessage | None:
        # Long polling (WaitTimeSeconds > 0) queries every SQS server, so a
        # single pending message is not missed the way a short poll can.
        resp = self._client.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=1,
            VisibilityTimeout=self._visibility,
            WaitTimeSeconds=self._wait,
        )
        messages = resp.get("Messages") or []
        if not messages:
            return None
        m = messages[0]
        return QueueMessage(body=m["Body"], handle=m["ReceiptHandle"])

    def delete(self, handle: str) -> None:
        self._client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=handle)

    def send(self, body: str) -> None:
        self._client.send_message(QueueUrl=self.queue_url, MessageBody=body)


class FileQueue:
    """
    A JSON file acting as the one-record slot (local runs and tests).
    The file path doubles as the receipt handle.
    """

    def __init__(self, path: str):
        self.path = path

    def receive_one(self) -> QueueMessage | None:
        try:
            with open(self.path, encoding="utf-8") as f:
                return QueueMessage(body=f.read(), handle=self.path)
        except FileNotFoundError:
            return None

    def delete(self, handle: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.remove(handle)

    def send(self, body: str) -> None:
        d = os.path.dirname(os.path.abspath(self.path)) or "."
        os.makedirs(d, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=d, prefix=".link_watch-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.remove(tmp)
            raise
