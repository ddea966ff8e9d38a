# tests/test_cache.py
from datetime import date

import pytest

from modules.job_discovery.lib.cache import JobCache
from modules.job_discovery.lib.models import JobRecord


def _rec(title: str, company: str = "SSC") -> JobRecord:
    return JobRecord(
        title=title,
        company=company,
        location="Delhi",
        type="Full-time",
        category="Central Government",
        deadline=date(2025, 3, 1),
        description="d",
        salary="Varies",
    )


def test_put_replaces_whole_entry(frozen_utc):
    cache = JobCache()
    cache.put("SSC", [_rec("A"), _rec("B")])
    cache.put("SSC", [_rec("C")])

    assert [r.title for r in cache.get("SSC")] == ["C"]
    assert cache.stats() == {"SSC": {"count": 1, "last_updated": "2025-01-01T00:00:00Z"}}


def test_get_all_unknown_and_empty():
    cache = JobCache()
    cache.put("A", [_rec("a1")])
    cache.put("B", [])
    cache.put("C", [_rec("c1"), _rec("c2")])

    assert [r.title for r in cache.get()] == ["a1", "c1", "c2"]
    assert cache.get("missing") == []
    assert cache.get("B") == []
    assert cache.stats()["B"]["count"] == 0
    assert list(cache.stats()) == ["A", "B", "C"]


def test_log_is_bounded_to_fifty_oldest_evicted():
    cache = JobCache()
    for i in range(60):
        cache.append_log([f"S{i}"], i, "success")

    logs = cache.get_logs()
    assert len(logs) == 50
    assert logs[0].jobs_added == 10
    assert logs[-1].jobs_added == 59
    assert cache.max_logs == 50


def test_log_entry_shape(frozen_utc):
    cache = JobCache(max_logs=3)
    ok = cache.append_log(["A", "B"], 2, "success")
    bad = cache.append_log([], 0, "failed", error="AI client not initialized")

    assert ok.to_dict() == {
        "timestamp": "2025-01-01T00:00:00Z",
        "sources": ["A", "B"],
        "jobs_added": 2,
        "status": "success",
    }
    assert bad.to_dict()["error"] == "AI client not initialized"


def test_zero_yield_streaks_and_degraded_sources():
    cache = JobCache()
    for status in ("no_jobs", "parse_failed", "fetch_failed"):
        cache.record_outcome("RBI", status)
    cache.record_outcome("RBI", "blocked")
    cache.record_outcome("SBI", "ai_error")

    assert cache.degraded_sources(3) == {"RBI": 3}
    assert cache.degraded_sources(1) == {"RBI": 3, "SBI": 1}

    assert cache.record_outcome("RBI", "ok") == 0
    assert cache.degraded_sources(3) == {}


def test_clear_and_validation():
    cache = JobCache()
    cache.put("A", [_rec("x")])
    cache.append_log(["A"], 1, "success")
    cache.record_outcome("A", "no_jobs")
    cache.clear()
    assert cache.get() == [] and cache.get_logs() == [] and cache.degraded_sources(1) == {}

    with pytest.raises(ValueError):
        JobCache(max_logs=0)
