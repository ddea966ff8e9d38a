from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

ExtractionStatus = Literal["jobs", "no_jobs", "parse_failed", "ai_error"]
SourceStatus = Literal[
    "ok",
    "no_jobs",
    "parse_failed",
    "ai_error",
    "fetch_failed",
    "blocked",
    "skipped",
    "error",
]
LogStatus = Literal["success", "failed"]


@dataclass(frozen=True)
class JobRecord:
    """
    A single job posting produced by the extractor.

    Records are never updated in place: a later batch that sees the same
    posting produces a new record and the sink decides whether it is a duplicate.
    """

    title: str
    company: str
    location: str
    type: str
    category: str
    deadline: date
    description: str
    salary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "type": self.type,
            "category": self.category,
            "deadline": self.deadline.isoformat(),
            "description": self.description,
            "salary": self.salary,
        }


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetching one URL (after all retry attempts)."""

    url: str
    html: str | None = None
    error: str | None = None
    attempts: int = 0
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return bool(self.html)


@dataclass(frozen=True)
class ExtractionResult:
    """
    Tri-state extraction outcome.

    `no_jobs` means the model answered with a usable array that held no valid
    postings; `parse_failed` means the answer could not be read at all.
    """

    status: ExtractionStatus
    records: tuple[JobRecord, ...] = ()
    error: str | None = None


@dataclass
class SourceOutcome:
    source: str
    status: SourceStatus
    found: int = 0
    persisted: int = 0
    duplicates: int = 0
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "found": self.found,
            "persisted": self.persisted,
            "duplicates": self.duplicates,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class CacheEntry:
    source: str
    records: tuple[JobRecord, ...]
    timestamp: str  # UTC ISO-8601


@dataclass(frozen=True)
class ScrapeLogEntry:
    timestamp: str  # UTC ISO-8601
    sources: tuple[str, ...]
    jobs_added: int
    status: LogStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": self.timestamp,
            "sources": list(self.sources),
            "jobs_added": self.jobs_added,
            "status": self.status,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class BatchOutcome:
    """Aggregate result of one scheduler wake-up."""

    trigger_type: str
    status: LogStatus
    start_index: int
    next_index: int
    sources: list[SourceOutcome] = field(default_factory=list)
    jobs_added: int = 0
    error: str | None = None
    log_entry: ScrapeLogEntry | None = None

    @property
    def processed(self) -> list[str]:
        return [o.source for o in self.sources]

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_type": self.trigger_type,
            "status": self.status,
            "start_index": self.start_index,
            "next_index": self.next_index,
            "jobs_added": self.jobs_added,
            "error": self.error,
            "sources": [o.to_dict() for o in self.sources],
        }
