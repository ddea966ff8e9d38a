# tests/discovery_live/test_official_portals_live.py
"""
Live smoke tests against the real portals and (optionally) OpenAI.

Run with `pytest --live tests/discovery_live -s`. Portals change and go down
often, so these assert shape, not content.
"""

from __future__ import annotations

import os

import pytest

from modules.job_discovery.lib.config import Settings
from modules.job_discovery.lib.http_client import HttpClient
from modules.job_discovery.lib.pipeline import build_pipeline
from modules.job_discovery.lib.robots import RobotsPolicy
from modules.job_discovery.lib.sources import SourceRegistry


def _print_outcome(label: str, outcome) -> None:
    print(f"\n[{label}] status={outcome.status} jobs_added={outcome.jobs_added} next_index={outcome.next_index}")
    for o in outcome.sources:
        print(f"  - {o.source:<12} {o.status:<13} found={o.found} persisted={o.persisted} err={o.error or ''}")


@pytest.mark.live
def test_fetch_and_robots_for_first_window_live():
    client = HttpClient(timeout=20.0, max_retries=2)
    robots = RobotsPolicy(client)
    try:
        for source in SourceRegistry.defaults().batch(0, 5):
            allowed = robots.is_allowed(source.base_url)
            result = client.fetch_html(source.base_url) if allowed else None
            print(
                f"  - {source.name:<12} allowed={allowed} "
                f"ok={getattr(result, 'ok', None)} attempts={getattr(result, 'attempts', 0)} "
                f"err={getattr(result, 'error', None)}"
            )
            if result is not None:
                assert result.ok or result.error
    finally:
        client.close()


@pytest.mark.live
@pytest.mark.skipif(not os.getenv("OPENAI_API_KEY"), reason="OPENAI_API_KEY not set")
def test_one_batch_end_to_end_live(tmp_path):
    settings = Settings.from_env_and_kwargs({
        "sqlite_path": str(tmp_path / "live.db"),
        "batch_size": int(os.getenv("DISCOVERY_LIVE_BATCH", "2")),
        "start_index": int(os.getenv("DISCOVERY_LIVE_START", "0")),
    })
    pipeline = build_pipeline(settings)
    try:
        outcome = pipeline.run_batch(trigger_type="manual")
    finally:
        pipeline.fetcher.close()

    _print_outcome("live-batch", outcome)
    assert outcome.status == "success"
    assert len(outcome.sources) == settings.batch_size
    for rec in pipeline.cache.get():
        assert rec.title and rec.company
        assert len(rec.description) <= 200
