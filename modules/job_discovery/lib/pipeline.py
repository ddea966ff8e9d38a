"""
Round-robin discovery pipeline.

Each call to `run_batch` processes the next window of sources from the
registry, strictly one source at a time:

    robots check -> fetch -> AI extraction -> cache -> persistence sink

A failure at any step is confined to its source. The batch always finishes
(unless a stop is requested), advances the cursor and appends a single entry
to the rolling scrape log.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import requests

from modules._shared.utils import AIConfigError, OpenAIChat

from . import logging_bridge
from .cache import JobCache
from .config import Settings
from .db import DuplicateJobError, JobSink, SqliteJobSink
from .extractor import CompletionClient, Extractor
from .http_client import HttpClient
from .models import BatchOutcome, SourceOutcome
from .robots import RobotsPolicy
from .sources import Source, SourceRegistry

LOG = logging.getLogger(__name__)


class DiscoveryPipeline:
    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: HttpClient,
        robots: RobotsPolicy | None,
        extractor: Extractor,
        cache: JobCache,
        sink: JobSink,
        *,
        batch_size: int = 5,
        start_index: int = 0,
        respect_robots: bool = True,
        skip_network: bool = False,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be >= 1")
        if not 0 <= start_index < len(registry):
            raise ValueError(f"start_index must be in [0, {len(registry)})")
        self.registry = registry
        self.fetcher = fetcher
        self.robots = robots
        self.extractor = extractor
        self.cache = cache
        self.sink = sink
        self.batch_size = batch_size
        self.respect_robots = respect_robots
        self.skip_network = skip_network

        self._index = start_index
        self._run_lock = threading.Lock()
        self._stop = threading.Event()

    # ---- state ----
    @property
    def current_index(self) -> int:
        return self._index

    @property
    def in_flight(self) -> bool:
        return self._run_lock.locked()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Finish the source in progress, then end the batch early."""
        self._stop.set()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no batch is running. False if `timeout` ran out first."""
        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        return acquired

    def next_sources(self) -> list[Source]:
        return self.registry.batch(self._index, self.batch_size)

    # ---- batch ----
    def run_batch(self, trigger_type: str = "scheduled") -> BatchOutcome | None:
        """
        Process one window of sources.

        Returns None without doing anything when another batch holds the lock
        or a stop has been requested.
        """
        if not self._run_lock.acquire(blocking=False):
            LOG.warning("Batch already in flight; ignoring %s trigger", trigger_type)
            self._log_skipped(trigger_type, "in_flight")
            return None
        try:
            if self._stop.is_set():
                LOG.info("Stop requested; ignoring %s trigger", trigger_type)
                self._log_skipped(trigger_type, "stopping")
                return None
            return self._run_batch_locked(trigger_type)
        finally:
            self._run_lock.release()

    def _log_skipped(self, trigger_type: str, reason: str) -> None:
        logging_bridge.activity({
            "component": "job_discovery.pipeline",
            "op": "batch_skipped",
            "trigger_type": trigger_type,
            "reason": reason,
        })

    def _run_batch_locked(self, trigger_type: str) -> BatchOutcome:
        start = self._index
        started = time.perf_counter()

        if not self.extractor.available and not self.skip_network:
            reason = self.extractor.unavailable_reason or "AI client not initialized"
            LOG.error("Skipping batch: %s", reason)
            entry = self.cache.append_log([], 0, "failed", error=reason)
            logging_bridge.error({
                "component": "job_discovery.pipeline",
                "op": "ai_unavailable",
                "trigger_type": trigger_type,
                "error": reason,
            })
            return BatchOutcome(
                trigger_type=trigger_type,
                status="failed",
                start_index=start,
                next_index=start,
                error=reason,
                log_entry=entry,
            )

        window = self.next_sources()
        LOG.info(
            "Batch (%s) starting at index %d: %s",
            trigger_type,
            start,
            ", ".join(s.name for s in window),
        )

        outcomes: list[SourceOutcome] = []
        for source in window:
            if self._stop.is_set():
                LOG.info("Stop requested; ending batch after %d source(s)", len(outcomes))
                break
            outcomes.append(self.process_source(source))

        processed = len(outcomes)
        step = self.batch_size if processed == len(window) else processed
        self._index = self.registry.advance(start, step)

        jobs_added = sum(o.persisted for o in outcomes)
        entry = self.cache.append_log([o.source for o in outcomes], jobs_added, "success")
        outcome = BatchOutcome(
            trigger_type=trigger_type,
            status="success",
            start_index=start,
            next_index=self._index,
            sources=outcomes,
            jobs_added=jobs_added,
            log_entry=entry,
        )

        logging_bridge.activity({
            "component": "job_discovery.pipeline",
            "op": "batch",
            "trigger_type": trigger_type,
            "start_index": start,
            "next_index": self._index,
            "sources": outcome.processed,
            "statuses": {o.source: o.status for o in outcomes},
            "jobs_added": jobs_added,
            "interrupted": processed < len(window),
            "duration_ms": int((time.perf_counter() - started) * 1000),
        })
        LOG.info("Batch complete: %d job(s) added, next index %d", jobs_added, self._index)
        return outcome

    # ---- one source ----
    def process_source(self, source: Source) -> SourceOutcome:
        """Run one source end to end; never raises."""
        t0 = time.perf_counter()
        try:
            outcome = self._process_source(source)
        except Exception as e:
            LOG.exception("Unexpected failure while processing %s", source.name)
            outcome = SourceOutcome(source=source.name, status="error", error=f"{type(e).__name__}: {e}")
        outcome.duration_ms = int((time.perf_counter() - t0) * 1000)

        streak = self.cache.record_outcome(source.name, outcome.status)
        logging_bridge.activity({
            "component": "job_discovery.pipeline",
            "op": "source",
            "source": source.name,
            "url": source.base_url,
            "status": outcome.status,
            "found": outcome.found,
            "persisted": outcome.persisted,
            "duplicates": outcome.duplicates,
            "zero_streak": streak,
            "error": outcome.error,
            "duration_ms": outcome.duration_ms,
        })
        return outcome

    def _process_source(self, source: Source) -> SourceOutcome:
        if self.skip_network:
            return SourceOutcome(source=source.name, status="skipped", error="skip_network")

        if self.respect_robots and self.robots is not None and not self.robots.is_allowed(source.base_url):
            LOG.info("robots.txt disallows %s; skipping", source.base_url)
            return SourceOutcome(source=source.name, status="blocked", error="disallowed by robots.txt")

        fetched = self.fetcher.fetch_html(source.base_url)
        if not fetched.ok:
            LOG.warning("Fetch failed for %s: %s", source.name, fetched.error)
            return SourceOutcome(source=source.name, status="fetch_failed", error=fetched.error)

        try:
            result = self.extractor.extract(fetched.html or "", source.name, source.category)
        except AIConfigError as e:
            return SourceOutcome(source=source.name, status="ai_error", error=str(e))

        if result.status == "ai_error":
            return SourceOutcome(source=source.name, status="ai_error", error=result.error)

        # A readable (even empty) answer replaces whatever was cached for this source.
        self.cache.put(source.name, result.records)

        persisted = duplicates = 0
        for record in result.records:
            try:
                self.sink.create_job(record)
                persisted += 1
            except DuplicateJobError:
                duplicates += 1
            except Exception as e:
                LOG.warning("Could not store %r from %s: %s", record.title, source.name, e)

        return SourceOutcome(
            source=source.name,
            status="ok" if result.records else result.status,
            found=len(result.records),
            persisted=persisted,
            duplicates=duplicates,
            error=result.error,
        )


# ---- wiring -----------------------------------------------------------------


def build_pipeline(
    settings: Settings,
    *,
    ai_client: CompletionClient | None = None,
    sink: JobSink | None = None,
    cache: JobCache | None = None,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] | None = None,
) -> DiscoveryPipeline:
    """
    Wire a pipeline from Settings.

    The AI client is created once. Missing credentials do not raise: the
    pipeline is built in AI-unavailable mode and every batch is logged as failed.
    """
    registry = settings.registry()

    fetcher_kwargs = {}
    if sleep is not None:
        fetcher_kwargs["sleep"] = sleep
    fetcher = HttpClient(
        timeout=settings.fetch_timeout_sec,
        max_retries=settings.max_retries,
        backoff_base=settings.backoff_base_sec,
        session=session,
        **fetcher_kwargs,
    )
    robots = RobotsPolicy(fetcher, user_agent=settings.robots_user_agent) if settings.respect_robots else None

    reason: str | None = None
    if ai_client is None:
        chat = OpenAIChat(
            model_env=settings.ai_model_env,
            temp_env=settings.ai_temp_env,
            api_key_env=settings.ai_api_key_env,
            timeout_sec=settings.ai_timeout_sec,
            default_model=settings.ai_model,
        )
        try:
            chat.ensure_configured()
            ai_client = chat
        except AIConfigError as e:
            reason = f"AI client not initialized: {e}"
            LOG.critical("%s; discovery batches will be logged as failed", reason)

    extractor = Extractor(
        ai_client,
        html_char_limit=settings.html_char_limit,
        max_jobs=settings.max_jobs_per_source,
        default_deadline_days=settings.default_deadline_days,
        unavailable_reason=reason,
    )

    return DiscoveryPipeline(
        registry,
        fetcher,
        robots,
        extractor,
        cache if cache is not None else JobCache(),
        sink if sink is not None else SqliteJobSink(settings.sqlite_path),
        batch_size=settings.batch_size,
        start_index=settings.start_index,
        respect_robots=settings.respect_robots,
        skip_network=settings.skip_network,
    )
