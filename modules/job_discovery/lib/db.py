from __future__ import annotations

import contextlib
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, Protocol

from .logging_bridge import error as log_error
from .models import JobRecord
from .utils import now_iso


class DuplicateJobError(Exception):
    """The sink already holds a job with the same (title, company, location, deadline)."""


@dataclass(frozen=True)
class StoredJob:
    id: int
    record: JobRecord
    created_utc: str


class JobSink(Protocol):
    def create_job(self, record: JobRecord) -> StoredJob: ...


# ---- Public API -------------------------------------------------------------


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


def create_job(sqlite_path: str, record: JobRecord) -> StoredJob:
    """
    Insert one job and return it with its row id.

    Raises DuplicateJobError when the dedupe key already exists; any other
    database error is logged and re-raised.
    """
    ts = now_iso()
    try:
        with contextlib.closing(_connect(sqlite_path)) as conn:
            _apply_pragmas(conn)
            cur = conn.execute(
                """
                INSERT INTO jobs (title, company, location, type, category,
                                  deadline, description, salary, created_utc)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.title,
                    record.company,
                    record.location,
                    record.type,
                    record.category,
                    record.deadline.isoformat(),
                    record.description,
                    record.salary,
                    ts,
                ),
            )
            row_id = int(cur.lastrowid or 0)
    except sqlite3.IntegrityError as e:
        raise DuplicateJobError(f"{record.title!r} at {record.company!r} already stored") from e
    except Exception as e:
        log_error({
            "component": "job_discovery.db",
            "op": "create_job",
            "sqlite_path": sqlite_path,
            "error": repr(e),
        })
        raise
    return StoredJob(id=row_id, record=record, created_utc=ts)


# ---- Helpers for tests & diagnostics ----------------------------------------


def count_rows(sqlite_path: str) -> int:
    """Return total rows in jobs table; 0 if DB missing/empty."""
    if not os.path.exists(sqlite_path):
        return 0
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)
        (n,) = conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
    return int(n or 0)


def latest_jobs(sqlite_path: str, limit: int = 20) -> list[dict[str, Any]]:
    """Most recently stored jobs, newest first."""
    if not os.path.exists(sqlite_path):
        return []
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            """
            SELECT id, title, company, location, type, category, deadline,
                   description, salary, created_utc
            FROM jobs
            ORDER BY created_utc DESC, id DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
    return [dict(r) for r in rows]


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file entirely (for pytest fixtures).
    Safe if it doesn't exist.
    """
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


class SqliteJobSink:
    """JobSink backed by a local SQLite file."""

    def __init__(self, sqlite_path: str):
        self.sqlite_path = sqlite_path
        init_db(sqlite_path)

    def create_job(self, record: JobRecord) -> StoredJob:
        return create_job(self.sqlite_path, record)

    def __repr__(self) -> str:
        return f"SqliteJobSink({self.sqlite_path!r})"


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # Autocommit: each INSERT is its own transaction.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
          id INTEGER PRIMARY KEY,
          title       TEXT NOT NULL,
          company     TEXT NOT NULL,
          location    TEXT NOT NULL,
          type        TEXT NOT NULL,
          category    TEXT NOT NULL,
          deadline    TEXT NOT NULL,
          description TEXT NOT NULL,
          salary      TEXT NOT NULL,
          created_utc TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_jobs_dedupe
          ON jobs (title, company, location, deadline);
        """
    )
