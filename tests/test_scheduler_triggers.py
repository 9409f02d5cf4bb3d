from datetime import datetime, timedelta, timezone

import pytest
import pytz
from apscheduler.triggers.combining import OrTrigger

from service.scheduler import _make_job_spec, _resolve_timezone, build_trigger, preview_trigger

UTC = pytz.utc

# 2096-01-02 is a Monday
MONDAY = datetime(2096, 1, 2, 0, 0, 0, tzinfo=timezone.utc)


def test_interval_minutes():
    trig = build_trigger({"interval": {"minutes": 30}}, UTC)
    assert trig.interval.total_seconds() == 1800

    times = preview_trigger(trig, UTC, count=3, start=MONDAY)
    assert times[1] - times[0] == timedelta(minutes=30)
    assert times[2] - times[1] == timedelta(minutes=30)


def test_cron_string_every_six_hours():
    trig = build_trigger({"cron": "0 */6 * * *"}, UTC)
    times = preview_trigger(trig, UTC, count=4, start=MONDAY + timedelta(minutes=1))
    assert [t.hour for t in times] == [6, 12, 18, 0]
    assert all(t.minute == 0 for t in times)


def test_cron_dict_weekdays_only():
    trig = build_trigger({"cron": {"minute": 0, "hour": 3, "day_of_week": "mon-fri"}}, UTC)
    times = preview_trigger(trig, UTC, count=6, start=MONDAY)
    assert [t.day for t in times] == [2, 3, 4, 5, 6, 9]  # Sat 7 and Sun 8 skipped
    assert all(t.hour == 3 for t in times)


def test_date_iso_and_epoch():
    trig = build_trigger({"date": {"run_at": "2099-01-01T00:00:00Z"}}, UTC)
    assert trig.run_date == datetime(2099, 1, 1, tzinfo=timezone.utc)

    ts = int(datetime(2099, 1, 1, tzinfo=timezone.utc).timestamp())
    trig = build_trigger({"date": ts}, UTC)
    assert trig.run_date.year == 2099
    assert trig.run_date.tzinfo is not None


def test_date_without_offset_uses_scheduler_timezone():
    tz = pytz.timezone("America/New_York")
    trig = build_trigger({"date": {"run_at": "2099-01-01T06:00:00"}}, tz)
    assert trig.run_date.utcoffset() == timedelta(hours=-5)


def test_daily_time_multiple_times_are_exact_pairs():
    trig = build_trigger({"daily_time": {"time": ["05:00", "06:30", "06:30", "18:00"]}}, UTC)
    assert isinstance(trig, OrTrigger)

    times = preview_trigger(trig, UTC, count=4, start=MONDAY)
    assert [(t.hour, t.minute) for t in times] == [(5, 0), (6, 30), (18, 0), (5, 0)]


def test_daily_time_string_shorthand():
    trig = build_trigger({"daily_time": "07:15:30"}, UTC)
    [first] = preview_trigger(trig, UTC, count=1, start=MONDAY)
    assert (first.hour, first.minute, first.second) == (7, 15, 30)


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"date": {}},
        {"daily_time": {}},
        {"daily_time": {"time": "25:00"}},
        {"cron": "*/15 * *"},
        {"cron": {"minute": 0, "weekday": 1}},
        {"interval": {"minutes": -5}},
        {"interval": {"minutes": 0}},
        {"interval": {"hours": 1}, "cron": "0 * * * *"},
    ],
)
def test_invalid_triggers_raise(payload):
    with pytest.raises(ValueError):
        build_trigger(payload, UTC)


def test_preview_stops_after_one_shot_date():
    trig = build_trigger({"date": {"run_at": "2099-01-01T00:00:00Z"}}, UTC)
    assert len(preview_trigger(trig, UTC, count=5, start=MONDAY)) == 1


def test_job_spec_defaults():
    spec = _make_job_spec(
        {"module": "modules.job_aggregator.main", "trigger": {"interval": {"hours": 6}}, "kwargs": {"niche_id": "ngo"}},
        default_job_defaults={"coalesce": True, "max_instances": 1},
        tz=UTC,
    )
    assert spec.id == "modules.job_aggregator.main"
    assert (spec.max_instances, spec.coalesce) == (1, True)
    assert spec.kwargs == {"niche_id": "ngo"}


def test_unknown_timezone_falls_back_to_utc():
    assert _resolve_timezone({"timezone": "Mars/Olympus_Mons"}) is pytz.UTC
    assert str(_resolve_timezone({"timezone": "Europe/London"})) == "Europe/London"
