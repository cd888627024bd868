from datetime import datetime, timedelta, timezone

import pytest
import pytz

# Helpers ----------------------------------------------------------------------


def _next_times(trigger, tzinfo, count=5, start=None):
    """
    Ask a trigger for the next `count` fire times, seeding the computation
    as if the previous fire happened at `start`.
    """
    if start is None:
        start = datetime.now(tz=tzinfo)

    prev = start
    now = start

    out = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return out


# Tests ------------------------------------------------------------------------


def test_build_trigger_accepts_interval_hours():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"interval": {"hours": 6}}, pytz.UTC)
    assert trig.interval.total_seconds() == 6 * 3600

    ts = datetime(2099, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=2, start=ts)
    assert times[0] == ts + timedelta(hours=6)
    assert times[1] == ts + timedelta(hours=12)


def test_build_trigger_accepts_crontab_string():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"cron": "30 7 * * mon-fri"}, pytz.UTC)
    # 2099-01-05 is a Monday
    start = datetime(2099, 1, 5, 0, 0, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=2, start=start)
    assert times[0] == datetime(2099, 1, 5, 7, 30, tzinfo=timezone.utc)
    assert times[1] == datetime(2099, 1, 6, 7, 30, tzinfo=timezone.utc)


def test_build_trigger_cron_object_defaults_to_top_of_hour():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"cron": {"hour": "5-6"}}, pytz.UTC)
    start = datetime(2099, 1, 5, 4, 59, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=3, start=start)
    assert times == [
        datetime(2099, 1, 5, 5, 0, 0, tzinfo=timezone.utc),
        datetime(2099, 1, 5, 6, 0, 0, tzinfo=timezone.utc),
        datetime(2099, 1, 6, 5, 0, 0, tzinfo=timezone.utc),
    ]


def test_build_trigger_accepts_date_iso_with_z():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"date": "2099-01-01T00:00:00Z"}, pytz.UTC)
    assert trig.run_date.year == 2099
    assert trig.run_date.utcoffset() == timedelta(0)


def test_build_trigger_naive_date_uses_scheduler_tz():
    from service.scheduler import _build_trigger

    tz = pytz.timezone("America/Sao_Paulo")
    trig = _build_trigger({"date": "2099-06-01T09:00:00"}, tz)
    assert trig.run_date.tzinfo is not None
    assert trig.run_date.hour == 9
    assert trig.run_date.utcoffset() == timedelta(hours=-3)


@pytest.mark.parametrize(
    "payload",
    [
        {"date": "next tuesday"},
        {"cron": "*/15 * *"},
        {"cron": {"minute": 0, "every": "day"}},
        {"interval": {"minutes": -5}},
        {"interval": {"minutes": 0}},
        {"interval": {"fortnights": 1}},
        {"interval": {"hours": 1}, "cron": "0 * * * *"},
        {},
    ],
)
def test_build_trigger_invalid_inputs_raise(payload):
    from service.scheduler import _build_trigger

    with pytest.raises(ValueError):
        _build_trigger(payload, pytz.UTC)


def test_start_registers_configured_jobs(tmp_path):
    import json

    from service import scheduler

    cfg = {
        "timezone": "UTC",
        "jobs": [
            {"id": "lw", "module": "modules.link_watch", "trigger": {"interval": {"hours": 6}}},
            {"id": "lw_nightly", "module": "modules.link_watch", "trigger": {"cron": "0 2 * * *"}},
        ],
    }
    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")

    controller = scheduler.start(str(p))
    try:
        assert sorted(controller.get_job_ids()) == ["lw", "lw_nightly"]
    finally:
        controller.stop()
    assert controller.join(timeout=1)
