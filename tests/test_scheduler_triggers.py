# tests/test_scheduler_triggers.py
from datetime import datetime, timedelta, timezone

import pytest
import pytz

from service.scheduler import _build_trigger, _preview_trigger, _resolve_timezone

EPOCH = datetime(2099, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def test_interval_minutes_fire_every_five_minutes_from_start_date():
    trig = _build_trigger({"interval": {"minutes": 5, "start_date": EPOCH}}, "UTC")
    assert trig.interval.total_seconds() == 300

    times = _preview_trigger(trig, timezone.utc, count=3, start=EPOCH - timedelta(days=1))
    assert times == [EPOCH, EPOCH + timedelta(minutes=5), EPOCH + timedelta(minutes=10)]


def test_interval_fields_add_up():
    trig = _build_trigger({"interval": {"hours": 1, "minutes": 30, "seconds": 15}}, "UTC")
    assert trig.interval == timedelta(hours=1, minutes=30, seconds=15)


def test_interval_stops_after_end_date():
    trig = _build_trigger(
        {"interval": {"minutes": 5, "start_date": EPOCH, "end_date": EPOCH + timedelta(minutes=12)}},
        "UTC",
    )
    times = _preview_trigger(trig, timezone.utc, count=6, start=EPOCH - timedelta(hours=1))
    assert times == [EPOCH, EPOCH + timedelta(minutes=5), EPOCH + timedelta(minutes=10)]


def test_jitter_is_passed_through():
    trig = _build_trigger({"interval": {"minutes": 5, "jitter": 30}}, "UTC")
    assert trig.jitter == 30


def test_scheduler_timezone_is_used_by_default():
    trig = _build_trigger({"interval": {"minutes": 5}}, pytz.timezone("Asia/Kolkata"))
    assert trig.interval.total_seconds() == 300
    assert "Kolkata" in str(trig.timezone)


def test_trigger_timezone_wins_over_scheduler_timezone():
    trig = _build_trigger({"interval": {"minutes": 5, "timezone": "Asia/Kolkata"}}, pytz.UTC)
    assert "Kolkata" in str(trig.timezone)


def test_resolve_timezone_falls_back_to_utc(monkeypatch):
    assert _resolve_timezone({"timezone": "Asia/Kolkata"}).zone == "Asia/Kolkata"
    assert _resolve_timezone({"timezone": "Not/AZone"}) is pytz.UTC

    monkeypatch.setenv("TZ", "Asia/Kolkata")
    assert _resolve_timezone({}).zone == "Asia/Kolkata"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"interval": None},
        {"interval": 5},
        {"interval": {"minutes": -5}},
        {"interval": {"minutes": 0}},
        {"interval": {"minutes": "five"}},
        {"interval": {"minutes": 5, "every": 2}},
        {"interval": {"minutes": 5}, "cron": "*/5 * * * *"},
        {"cron": "*/5 * * * *"},
        {"date": {"run_at": "2099-01-01T00:00:00Z"}},
        {"daily_time": {"time": "03:15"}},
    ],
)
def test_build_trigger_invalid_inputs_raise(payload):
    with pytest.raises(ValueError):
        _build_trigger(payload, "UTC")
