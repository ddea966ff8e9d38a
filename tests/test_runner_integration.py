# tests/test_runner_integration.py
import re
import sys
import time

import pytest

from service import logging_utils, runner


def test_runner_runs_job_discovery_offline(tmp_path, frozen_utc):
    result, run_id = runner.run_module_once(
        module="job_discovery",
        kwargs={"skip_network": "true", "start_index": "2", "sqlite_path": str(tmp_path / "r.db")},
    )
    assert re.match(r"^[a-f0-9]{32}$", run_id)
    assert result.ok is True
    assert result.meta["status"] == "success"
    assert result.meta["jobs_added"] == 0
    assert len(result.meta["sources"]) == 5
    assert {s["status"] for s in result.meta["sources"]} == {"skipped"}
    assert result.meta["next_index"] == 7

    records = logging_utils.read_records(logging_utils.get_activity_log_path())
    (run_rec,) = [r for r in records if r.get("event") == "module_run"]
    assert run_rec["run_id"] == run_id
    assert run_rec["kwargs"]["start_index"] == 2
    assert run_rec["kwargs"]["skip_network"] is True
    assert run_rec["ts"] == "2025-01-01T00:00:00Z"


def test_runner_reports_failed_batch_without_key(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result, _ = runner.run_module_once(module="modules.job_discovery", kwargs={"sqlite_path": str(tmp_path / "r.db")})
    assert result.ok is False
    assert result.meta["status"] == "failed"
    assert "OPENAI_API_KEY" in result.message


def test_runner_propagates_config_errors():
    from modules.job_discovery.lib.config import ConfigError

    with pytest.raises(ConfigError, match="bogus"):
        runner.run_module_once(module="job_discovery", kwargs={"bogus": "1"})

    records = logging_utils.read_records(logging_utils.get_activity_log_path())
    assert records[-1]["ok"] is False
    assert records[-1]["meta"]["exception_type"] == "ConfigError"


def test_runner_unknown_module_raises():
    with pytest.raises(ModuleNotFoundError):
        runner.run_module_once(module="no_such_module_xyz")


def test_runner_timeout(monkeypatch):
    slow = type(sys)("slow_mod")
    slow.run = lambda **kw: time.sleep(2)
    monkeypatch.setitem(sys.modules, "slow_mod", slow)

    with pytest.raises(TimeoutError):
        runner.run_module_once(module="slow_mod", timeout_sec=0.1)


def test_normalize_kwargs_types():
    out = runner._normalize_kwargs_types({
        "batch_size": "3",
        "backoff_base_sec": "1.5",
        "respect_robots": "no",
        "sources": '[{"name": "X"}]',
        "sources_path": "123",
        "note": "hello",
    })
    assert out == {
        "batch_size": 3,
        "backoff_base_sec": 1.5,
        "respect_robots": False,
        "sources": [{"name": "X"}],
        "sources_path": "123",
        "note": "hello",
    }


@pytest.mark.parametrize(
    "value,ok,message",
    [
        ({"status": "success", "message": "done"}, True, "done"),
        ({"status": "failed"}, False, "OK"),
        (None, True, "OK"),
        ("plain", True, "plain"),
    ],
)
def test_coerce_result(value, ok, message):
    res = runner._coerce_result(value)
    assert res.ok is ok and res.message == message
