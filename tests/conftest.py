# tests/conftest.py
from __future__ import annotations

import contextlib
import json
import os
from collections.abc import Callable
from datetime import date
from typing import Any

import pytest
import requests
from freezegun import freeze_time

from modules.job_discovery.lib.cache import JobCache
from modules.job_discovery.lib.db import DuplicateJobError, StoredJob
from modules.job_discovery.lib.extractor import Extractor
from modules.job_discovery.lib.http_client import HttpClient
from modules.job_discovery.lib.models import JobRecord
from modules.job_discovery.lib.pipeline import DiscoveryPipeline
from modules.job_discovery.lib.robots import RobotsPolicy
from modules.job_discovery.lib.sources import Source, SourceRegistry


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
def _env_defaults(monkeypatch, tmp_path, request):
    # Logs and DBs go to the per-test tmp dir so real state stays clean
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    monkeypatch.delenv("LLM_RAW_ENABLE", raising=False)

    live_flag = False
    with contextlib.suppress(Exception):
        live_flag = bool(request.config.getoption("--live"))
    if not live_flag:
        # Unit tests never reach OpenAI; a dummy key keeps build_pipeline in "AI available" mode.
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------
class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", encoding: str | None = "utf-8"):
        self.status_code = status_code
        self.text = text
        self.encoding = encoding
        self.apparent_encoding = "utf-8"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """
    Stand-in for requests.Session.

    `routes[url]` is a list consumed one item per GET (the last item repeats);
    items are FakeResponse instances or exceptions to raise. Unrouted
    robots.txt URLs return 404, anything else a small job page.
    """

    DEFAULT_PAGE = "<html><body><h1>Recruitment</h1><p>Notice 1</p></body></html>"

    def __init__(self, routes: dict[str, list[Any]] | None = None):
        self.routes: dict[str, list[Any]] = {k: list(v) for k, v in (routes or {}).items()}
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def get(self, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "headers": dict(headers or {}), "timeout": timeout})
        queue = self.routes.get(url)
        if queue:
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        elif url.endswith("/robots.txt"):
            item = FakeResponse(404, "not found")
        else:
            item = FakeResponse(200, self.DEFAULT_PAGE)
        if isinstance(item, BaseException):
            raise item
        return item

    def urls(self) -> list[str]:
        return [c["url"] for c in self.calls]

    def close(self) -> None:
        self.closed = True


class FakeAI:
    """
    CompletionClient double. `reply` is a string, an exception to raise, or a
    callable(prompt) -> str. Every prompt is recorded.
    """

    def __init__(self, reply: Any = "[]"):
        self.reply = reply
        self.prompts: list[str] = []

    def generate(self, prompt: str, image_bytes: bytes | None = None) -> str:
        self.prompts.append(prompt)
        if isinstance(self.reply, BaseException):
            raise self.reply
        if callable(self.reply):
            return self.reply(prompt)
        return self.reply


class MemorySink:
    """JobSink keyed like the SQLite one: (title, company, location, deadline)."""

    def __init__(self, fail_on: Callable[[JobRecord], bool] | None = None):
        self.rows: list[JobRecord] = []
        self._keys: set[tuple] = set()
        self._fail_on = fail_on

    def create_job(self, record: JobRecord) -> StoredJob:
        if self._fail_on and self._fail_on(record):
            raise RuntimeError("sink unavailable")
        key = (record.title, record.company, record.location, record.deadline)
        if key in self._keys:
            raise DuplicateJobError(record.title)
        self._keys.add(key)
        self.rows.append(record)
        return StoredJob(id=len(self.rows), record=record, created_utc="2025-01-01T00:00:00Z")


def jobs_json(*titles: str, company: str = "Gov Dept", **extra: Any) -> str:
    return json.dumps([{"title": t, "company": company, **extra} for t in titles])


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def seven_sources() -> SourceRegistry:
    """Registry A..G, the canonical round-robin example."""
    return SourceRegistry(
        Source(name=n, base_url=f"https://{n.lower()}.example.gov.in/careers", category="Central Government")
        for n in "ABCDEFG"
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_ai() -> FakeAI:
    return FakeAI(jobs_json("Clerk"))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_pipeline(seven_sources, fake_session, fake_ai, sleeps):
    """Factory for a fully faked DiscoveryPipeline; override any part by keyword."""

    def _make(**overrides: Any) -> DiscoveryPipeline:
        session = overrides.pop("session", fake_session)
        fetcher = HttpClient(
            timeout=1.0,
            max_retries=overrides.pop("max_retries", 3),
            backoff_base=2.0,
            session=session,
            sleep=sleeps.append,
        )
        robots = overrides.pop("robots", RobotsPolicy(fetcher))
        extractor = overrides.pop("extractor", None) or Extractor(
            overrides.pop("ai", fake_ai), today=lambda: date(2025, 1, 1)
        )
        return DiscoveryPipeline(
            overrides.pop("registry", seven_sources),
            fetcher,
            robots,
            extractor,
            overrides.pop("cache", None) or JobCache(),
            overrides.pop("sink", None) or MemorySink(),
            **overrides,
        )

    return _make
