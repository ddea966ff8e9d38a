from __future__ import annotations

import copy
import logging
from typing import Any

# The service package owns the JSONL writers; standalone use (scripts, tests
# without `service` importable) falls back to stdlib logging.
_logging_backend = None
try:
    from service import logging_utils as _svc_logging  # type: ignore

    _logging_backend = _svc_logging
except Exception:
    _logging_backend = None

_REDACT_KEYS = {
    "api_key",
    "apikey",
    "openai_api_key",
    "authorization",
    "token",
    "secret",
    "password",
    "bearer",
}


MODULE_NAME = "job_discovery"


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """Shallow-copy record, tag it with the module name and mask secret-looking top-level fields."""
    redacted = copy.copy(record)
    redacted.setdefault("module", MODULE_NAME)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret") or lk.endswith("_token"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """Structured activity record; JSONL via service.logging_utils when present."""
    payload = _redact_record(record)
    if _logging_backend and hasattr(_logging_backend, "write_activity_log"):
        try:
            _logging_backend.write_activity_log(payload)  # type: ignore[attr-defined]
            return
        except Exception:
            logging.getLogger(__name__).debug("activity log write failed", exc_info=True)
    logging.getLogger("job_discovery.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """Structured error record; JSONL via service.logging_utils when present."""
    payload = _redact_record(record)
    if _logging_backend and hasattr(_logging_backend, "write_error_log"):
        try:
            _logging_backend.write_error_log(payload)  # type: ignore[attr-defined]
            return
        except Exception:
            logging.getLogger(__name__).debug("error log write failed", exc_info=True)
    logging.getLogger("job_discovery.error").error(payload)
