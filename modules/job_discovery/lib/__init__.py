# modules/job_discovery/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .cache import JobCache
from .config import ConfigError, Settings
from .db import DuplicateJobError, SqliteJobSink, StoredJob
from .models import BatchOutcome, ExtractionResult, FetchResult, JobRecord, ScrapeLogEntry, SourceOutcome
from .pipeline import DiscoveryPipeline, build_pipeline
from .sources import DEFAULT_SOURCES, JOB_CATEGORIES, Source, SourceRegistry

__all__ = [
    "DEFAULT_SOURCES",
    "JOB_CATEGORIES",
    "BatchOutcome",
    "ConfigError",
    "DiscoveryPipeline",
    "DuplicateJobError",
    "ExtractionResult",
    "FetchResult",
    "JobCache",
    "JobRecord",
    "ScrapeLogEntry",
    "Settings",
    "Source",
    "SourceOutcome",
    "SourceRegistry",
    "SqliteJobSink",
    "StoredJob",
    "build_pipeline",
]
