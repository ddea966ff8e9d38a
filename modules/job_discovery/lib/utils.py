from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def clip(value: Any, limit: int, default: str = "") -> str:
    """
    Coerce an untrusted value to a stripped string of at most `limit` chars.
    None/empty values become `default` (which is clipped the same way).
    """
    text = "" if value is None else str(value).strip()
    if not text:
        text = default
    return text[:limit].strip()
