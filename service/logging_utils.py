# service/logging_utils.py
"""
Structured JSONL activity/error logs.

One file per UTC day and prefix (`activity-2025-01-31.jsonl`), optional size
rotation, secret redaction and host/pid metadata on every line. Settings are
read from the environment on each write so LOG_DIR can change at runtime
(tests point it at tmp_path).

Env:
  LOG_DIR                 base directory (default /app/local/logs)
  ACTIVITY_LOG_PREFIX     default "activity"
  ERROR_LOG_PREFIX        default "error"
  ACTIVITY_LOG_MAX_BYTES  size rotation threshold; <= 0 disables
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

REDACTED = "***REDACTED***"

# Case-insensitive substrings; a key containing any of these is masked.
_DEFAULT_REDACT_KEYS = {
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "authorization",
    "cookie",
}

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one structured activity record. Never mutates `record`.
    May raise on unrecoverable I/O or serialization errors.
    """
    _write_jsonl(_log_path_for_today(_activity_prefix()), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Append one structured error record, parallel to the activity log."""
    _write_jsonl(_log_path_for_today(_error_prefix()), record)


def get_activity_log_path() -> str:
    return _log_path_for_today(_activity_prefix())


def get_error_log_path() -> str:
    return _log_path_for_today(_error_prefix())


def read_records(path: str) -> list[dict[str, Any]]:
    """Parse a JSONL log file; unreadable lines are skipped."""
    out: list[dict[str, Any]] = []
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                with contextlib.suppress(json.JSONDecodeError):
                    out.append(json.loads(line))
    except FileNotFoundError:
        return []
    return out


def redact(record: dict[str, Any], keys: set[str] | None = None) -> dict[str, Any]:
    """Deep copy of `record` with secret-looking keys and bearer tokens masked."""
    return _redact_deep(record, keys or _DEFAULT_REDACT_KEYS)


# ---- Internal helpers --------------------------------------------------------


def _log_dir() -> str:
    return os.getenv("LOG_DIR", "/app/local/logs")


def _activity_prefix() -> str:
    return os.getenv("ACTIVITY_LOG_PREFIX", "activity")


def _error_prefix() -> str:
    return os.getenv("ERROR_LOG_PREFIX", "error")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _log_path_for_today(prefix: str) -> str:
    today = _dt.datetime.now(_dt.timezone.utc).date().isoformat()
    return os.path.join(_log_dir(), f"{prefix}-{today}.jsonl")


def _rotate_file_if_needed(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{ts}")


def _scrub_bearer(value: str) -> str:
    if "bearer " not in value.lower():
        return value
    scheme, _, _ = value.partition(" ")
    return f"{scheme} {REDACTED}"


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(pat in n for pat in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _key_matches(k, patterns) else _redact_deep(v, patterns)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _with_metadata(record: dict[str, Any]) -> dict[str, Any]:
    meta = record.get("_meta")
    meta = dict(meta) if isinstance(meta, dict) else {}
    meta.update({"host": _HOSTNAME, "pid": _PID})
    out = dict(record)
    out.setdefault("ts", _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z"))
    out["_meta"] = meta
    return out


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    _rotate_file_if_needed(path)

    payload = _with_metadata(_redact_deep(record, _DEFAULT_REDACT_KEYS))
    # Serialize before touching the file; default=str keeps dates/paths loggable.
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    def _append_once() -> None:
        # Single write with O_APPEND so concurrent writers never interleave a line.
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _append_once()
    except OSError:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        _append_once()
