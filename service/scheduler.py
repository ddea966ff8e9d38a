# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from modules.job_discovery.lib.config import Settings
from modules.job_discovery.lib.models import BatchOutcome
from modules.job_discovery.lib.pipeline import DiscoveryPipeline, build_pipeline

from . import config_schema
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

JOB_ID = "job_discovery"


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler and the discovery pipeline so the CLI and
    the HTTP surface can manage lifecycle and fire manual runs.
    """

    def __init__(self, scheduler: BackgroundScheduler, pipeline: DiscoveryPipeline) -> None:
        self._scheduler = scheduler
        self._pipeline = pipeline
        self._stopped_evt = threading.Event()

    @property
    def pipeline(self) -> DiscoveryPipeline:
        return self._pipeline

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running) and not self._stopped_evt.is_set()

    def stop(self, wait: bool = True) -> None:
        """
        Graceful shutdown: no new batches, the in-flight batch ends after its
        current source, and (with wait=True) the call returns once it has.
        """
        self._pipeline.request_stop()
        if self._scheduler.running:
            LOG.info("Shutting down scheduler (wait=%s)...", wait)
            self._scheduler.shutdown(wait=wait)
        if wait:
            self._pipeline.wait_idle()
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """True if stopped before timeout."""
        return self._stopped_evt.wait(timeout=timeout)

    def trigger_now(self, trigger_type: str = "manual") -> BatchOutcome | None:
        """
        Run one batch on the caller's thread. None if a batch is already in
        flight or a stop was requested; unexpected errors propagate.
        """
        return _run_guarded(self._pipeline, trigger_type, reraise=True)

    def next_run_time(self) -> datetime | None:
        job = self._scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    def get_job_ids(self) -> Iterable[str]:
        if not self._scheduler:
            return []
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None, pipeline: DiscoveryPipeline | None = None) -> SchedulerController:
    """
    Load configuration, build the pipeline (unless one is injected), register
    the discovery job and start APScheduler.

    APScheduler 3.x prefers a pytz scheduler timezone; triggers may carry
    their own zoneinfo timezone.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _resolve_timezone(cfg)
    disc = cfg["discovery"]

    if pipeline is None:
        settings = Settings.from_env_and_kwargs(config_schema.discovery_kwargs(cfg))
        pipeline = build_pipeline(settings)

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 2))},
        jobstores={"default": MemoryJobStore()},
    )

    trigger = _build_trigger(disc["trigger"], tz)
    _add_job(
        scheduler,
        pipeline,
        trigger,
        run_on_start=bool(disc.get("run_on_start", True)),
        misfire_grace_time=_int_or(disc.get("misfire_grace_time"), None),
    )

    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler, pipeline)


# ---- Helpers ----------------------------------------------------------------


def _preview_trigger(trigger, tz, count: int = 6, start=None):
    """
    Next `count` fire times, for logs. `now` is nudged forward by 1µs after
    each hit so the next lookup moves on.
    """
    now = start or datetime.now(tz=tz)
    prev = None
    times = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def _resolve_timezone(cfg: dict[str, Any]):
    """config['timezone'], then $TZ, then UTC, as a pytz timezone."""
    import pytz

    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> IntervalTrigger:
    """
    Build the discovery IntervalTrigger from

      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}

    A trigger block's own 'timezone' wins over the scheduler tz.
    """
    from datetime import tzinfo as _dt_tzinfo
    from zoneinfo import ZoneInfo

    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    def _tz(z):
        if not z:
            return None
        if isinstance(z, _dt_tzinfo):
            return z
        return ZoneInfo(str(z))

    extra = sorted(set(trig_def) - {"interval"})
    if extra:
        raise ValueError(f"only an 'interval' trigger is supported (got {extra})")
    spec = trig_def.get("interval")
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")

    allowed = {"weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date"}
    unknown = set(spec.keys()) - allowed
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

    def _as_int_ge0(name: str) -> int:
        if name not in spec:
            return 0
        try:
            v = int(spec[name])
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        return v

    kwargs: dict[str, Any] = {}
    for k in ("weeks", "days", "hours", "minutes", "seconds"):
        v = _as_int_ge0(k)
        if v:
            kwargs[k] = v
    if not kwargs:
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    if _as_int_ge0("jitter"):
        kwargs["jitter"] = _as_int_ge0("jitter")
    for k in ("start_date", "end_date"):
        if k in spec:
            kwargs[k] = spec[k]

    return IntervalTrigger(timezone=_tz(spec.get("timezone")) or _tz(tz), **kwargs)


def _run_guarded(pipeline: DiscoveryPipeline, trigger_type: str, reraise: bool = False) -> BatchOutcome | None:
    """
    Run one batch with timing and an activity record. Scheduled runs log and
    swallow errors; manual runs re-raise them.
    """
    started = _time.monotonic()
    LOG.info("Job[%s] starting (trigger=%s)", JOB_ID, trigger_type)
    try:
        outcome = pipeline.run_batch(trigger_type=trigger_type)
    except Exception:
        LOG.exception("Job[%s] raised an exception.", JOB_ID)
        _write_activity(trigger_type, status="error", duration_s=_time.monotonic() - started)
        if reraise:
            raise
        return None

    duration = _time.monotonic() - started
    if outcome is None:
        _write_activity(trigger_type, status="skipped", duration_s=duration)
        return None
    LOG.info("Job[%s] finished in %.3fs (%s)", JOB_ID, duration, outcome.status)
    _write_activity(trigger_type, status=outcome.status, duration_s=duration, outcome=outcome)
    return outcome


def _add_job(
    scheduler: BackgroundScheduler,
    pipeline: DiscoveryPipeline,
    trigger: Any,
    *,
    run_on_start: bool,
    misfire_grace_time: int | None,
) -> None:
    """
    Register the discovery job. max_instances=1 keeps timer runs from
    overlapping; the pipeline's own lock covers manual triggers.
    """

    def _job_wrapper():
        _run_guarded(pipeline, "scheduled")

    if os.getenv("SCHEDULER_PREVIEW") == "1":
        try:
            preview = _preview_trigger(trigger, scheduler.timezone, count=int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
            LOG.info("PREVIEW[%s]: %s", JOB_ID, ", ".join(t.isoformat() for t in preview) or "(none)")
        except Exception:
            LOG.debug("Trigger preview failed", exc_info=True)

    add_kwargs: dict[str, Any] = {}
    if run_on_start:
        add_kwargs["next_run_time"] = datetime.now(scheduler.timezone)

    scheduler.add_job(
        func=_job_wrapper,
        trigger=trigger,
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=misfire_grace_time,
        replace_existing=True,
        **add_kwargs,
    )

    job = scheduler.get_job(JOB_ID)
    nrt = getattr(job, "next_run_time", None) if job else None
    LOG.info(
        "Registered job[%s] trigger=%s next_run_time=%s",
        JOB_ID,
        trigger,
        nrt.isoformat() if nrt else "(pending start)",
    )


def _write_activity(trigger_type: str, status: str, duration_s: float, outcome: BatchOutcome | None = None) -> None:
    """Best-effort activity record; non-fatal on errors."""
    try:
        write_activity_log({
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": JOB_ID,
                "trigger_type": trigger_type,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "jobs_added": outcome.jobs_added if outcome else None,
                "next_index": outcome.next_index if outcome else None,
            },
        })
    except Exception:
        LOG.debug("write_activity_log failed for job[%s]", JOB_ID, exc_info=True)


def _int_or(v: Any, default: int | None) -> int | None:
    """Return int(v) or default if v is None/invalid (lenient for config)."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default
