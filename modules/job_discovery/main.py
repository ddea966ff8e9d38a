from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.logging_bridge import activity as log_activity
from .lib.pipeline import build_pipeline


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_discovery' module: one ad-hoc batch.

    Accepts the Settings kwargs (from runner/CLI), e.g.:
      sqlite_path: str = "/app/local/state/jobs.db"
      batch_size: int = 5
      start_index: int = 0
      sources_path: Optional[str]
      skip_network: bool = False

    A fresh process has no memory of the long-running service's cursor, so
    `start_index` picks the window explicitly.

    Returns a meta dict the runner records in the activity log.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_discovery.main",
        "op": "start",
        "sources": len(settings.registry()),
        "batch_size": settings.batch_size,
        "start_index": settings.start_index,
        "skip_network": settings.skip_network,
    })

    pipeline = build_pipeline(settings)
    try:
        outcome = pipeline.run_batch(trigger_type="manual")
    finally:
        pipeline.fetcher.close()

    # A private pipeline cannot be contended, but keep the contract explicit.
    if outcome is None:
        return {"message": "batch already in flight", "status": "skipped", "jobs_added": 0, "sources": []}

    if outcome.status == "failed":
        message = f"Discovery batch failed: {outcome.error}"
    else:
        message = f"Discovery batch added {outcome.jobs_added} job(s) from {len(outcome.sources)} source(s)"

    return {
        "message": message,
        "status": outcome.status,
        "jobs_added": outcome.jobs_added,
        "sources": [o.to_dict() for o in outcome.sources],
        "next_index": outcome.next_index,
    }
