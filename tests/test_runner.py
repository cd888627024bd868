import importlib
import json
import re
import sys
import textwrap
import time

import pytest


@pytest.fixture
def tmp_module(tmp_path, monkeypatch):
    """Create an importable throwaway module `tmp_jobs.<name>` with the given source."""
    pkg = tmp_path / "tmp_jobs"
    pkg.mkdir()
    (pkg / "__init__.py").write_text("", encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))

    def _make(name, source):
        (pkg / f"{name}.py").write_text(textwrap.dedent(source), encoding="utf-8")
        sys.modules.pop(f"tmp_jobs.{name}", None)
        importlib.invalidate_caches()
        return f"tmp_jobs.{name}"

    yield _make
    for key in [k for k in sys.modules if k.startswith("tmp_jobs")]:
        sys.modules.pop(key, None)


def _activity_records():
    from service import logging_utils

    with open(logging_utils.get_activity_log_path(), encoding="utf-8") as f:
        return [json.loads(line) for line in f]


def test_normalize_kwargs_types(monkeypatch):
    from service.runner import _normalize_kwargs_types

    monkeypatch.setenv("WATCH_QUEUE", "state-queue")
    out = _normalize_kwargs_types({
        "queue_name_env": "WATCH_QUEUE",
        "missing_env": "NOT_SET_ANYWHERE",
        "ttl_days": "30",
        "request_timeout": "2.5",
        "fail_fast": "true",
        "flag": "0",
        "terms": '["a", "b"]',
        "name": "inf",
        "keep": 7,
    })
    assert out == {
        "queue_name_env": "state-queue",
        "missing_env": "",
        "ttl_days": 30,
        "request_timeout": 2.5,
        "fail_fast": True,
        "flag": 0,
        "terms": ["a", "b"],
        "name": "inf",
        "keep": 7,
    }


def test_run_module_once_returns_meta_and_logs(tmp_module):
    from service import runner

    mod = tmp_module("ok_job", """
        def run(**kwargs):
            return {"message": "done", "got": kwargs}
    """)
    meta, run_id = runner.run_module_once(mod, kwargs={"n": "3"}, trigger_type="adhoc")

    assert re.match(r"^[a-f0-9]{32}$", run_id)
    assert meta == {"message": "done", "got": {"n": 3}}
    rec = _activity_records()[-1]
    assert rec["event"] == "module_run"
    assert rec["ok"] is True
    assert rec["run_id"] == run_id
    assert rec["trigger_type"] == "adhoc"


def test_run_module_once_none_result_is_ok(tmp_module):
    from service import runner

    mod = tmp_module("none_job", "def run(**kwargs):\n    return None\n")
    meta, _ = runner.run_module_once(mod)
    assert meta is None


def test_run_module_once_propagates_errors(tmp_module):
    from service import runner

    mod = tmp_module("bad_job", """
        def run(**kwargs):
            raise RuntimeError("scrape exploded")
    """)
    with pytest.raises(RuntimeError, match="scrape exploded"):
        runner.run_module_once(mod)
    rec = _activity_records()[-1]
    assert rec["ok"] is False
    assert rec["meta"]["exception_type"] == "RuntimeError"


def test_run_module_once_rejects_other_return_types(tmp_module):
    from service import runner

    mod = tmp_module("str_job", "def run(**kwargs):\n    return '<html></html>'\n")
    with pytest.raises(TypeError):
        runner.run_module_once(mod)


def test_run_module_once_without_run_callable(tmp_module):
    from service import runner

    mod = tmp_module("no_run", "VALUE = 1\n")
    with pytest.raises(AttributeError):
        runner.run_module_once(mod)


def test_run_module_once_times_out(tmp_module):
    from service import runner

    mod = tmp_module("slow_job", """
        import time
        def run(**kwargs):
            time.sleep(3)
    """)
    t0 = time.monotonic()
    with pytest.raises(TimeoutError):
        runner.run_module_once(mod, timeout_sec=1)
    assert time.monotonic() - t0 < 2.5
