# tests/conftest.py
import json
import os
import pathlib
import threading
import types

import pytest
from freezegun import freeze_time

from modules.link_watch.lib import config as lw_config
from modules.link_watch.lib.models import Element
from modules.link_watch.lib.queues import FileQueue, QueueMessage
from modules.link_watch.lib.state_store import StateStore


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    monkeypatch.setenv("SMTP_HOST", "smtp.invalid")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("SMTP_FROM", "watch@example.org")
    for name in ("SMTP_USERNAME", "SMTP_USER", "SMTP_SERVER_USER", "SMTP_PASSWORD", "SMTP_PASS",
                 "SMTP_SERVER_PASS", "SMTP_USE_SSL", "SMTP_STARTTLS", "SMTP_FROM_NAME", "ACTIVITY_LOG_MAX_BYTES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield


@pytest.fixture
def frozen_today():
    with freeze_time("2024-01-15T08:00:00"):
        yield


# ---------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------
@pytest.fixture
def stub_emailer(monkeypatch):
    """Capture send_html calls instead of talking SMTP."""
    sent = {"messages": []}

    def send_html(**kwargs):
        sent["messages"].append(kwargs)
        return "<fake-message-id@example>"

    ns = types.SimpleNamespace(send_html=send_html, sent=sent)
    monkeypatch.setattr("service.emailer.send_html", ns.send_html, raising=True)
    return ns


class FakeFetcher:
    """
    Serves canned elements per URL. A URL mapped to an Exception raises it.
    Records visits (thread-safe) so tests can assert on concurrency.
    """

    def __init__(self, pages):
        self.pages = pages
        self.visited = []
        self._lock = threading.Lock()
        self.closed = False

    def visit(self, url, selector, on_element, kind="css"):
        with self._lock:
            self.visited.append((url, selector))
        page = self.pages.get(url, [])
        if isinstance(page, Exception):
            raise page
        for text, href in page:
            on_element(Element(text=text, href=href))
        return len(page)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_fetcher_factory():
    return FakeFetcher


class MemoryQueue:
    """In-memory single-slot queue with optional injected failures."""

    def __init__(self, body=None):
        self.messages = [] if body is None else [body]
        self.sent = []
        self.deleted = []
        self.fail_on = set()

    def receive_one(self):
        if "receive" in self.fail_on:
            raise RuntimeError("receive boom")
        if not self.messages:
            return None
        return QueueMessage(body=self.messages[0], handle="h-0")

    def delete(self, handle):
        if "delete" in self.fail_on:
            raise RuntimeError("delete boom")
        self.deleted.append(handle)
        self.messages.pop(0)

    def send(self, body):
        if "send" in self.fail_on:
            raise RuntimeError("send boom")
        self.sent.append(body)
        self.messages.append(body)


@pytest.fixture
def memory_queue():
    return MemoryQueue


@pytest.fixture
def file_store(tmp_path):
    return StateStore(FileQueue(str(tmp_path / "state" / "seen.json")))


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------
@pytest.fixture
def sites_json(tmp_path: pathlib.Path) -> pathlib.Path:
    data = [
        {"url": "http://a.example/news", "selector": "a.headline", "terms": ["carnaval"]},
        {"url": "http://b.example/agenda", "elementSelector": "li > a", "terms": ["Show", "festival"]},
    ]
    path = tmp_path / "sites.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def make_settings(sites_json, tmp_path):
    def _make(**overrides):
        kw = {
            "sites_path": str(sites_json),
            "state_backend": "file",
            "state_path": str(tmp_path / "state" / "seen.json"),
            "email_to": "me@example.org",
            "max_parallel": 2,
        }
        kw.update(overrides)
        return lw_config.Settings.from_env_and_kwargs(kw)

    return _make
