# service/runner.py
"""
Run a module's `run(**kwargs)` once, out of band from the scheduler.

Used by `cli run` for ad-hoc batches. The call is wrapped with an optional
timeout and always produces one structured activity record, whether the
module succeeded, failed or timed out.
"""

from __future__ import annotations

import importlib
import json
import logging
import os
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from service.logging_utils import write_activity_log

log = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _maybe_bool(v: str) -> Any:
    low = v.strip().lower()
    if low in ("true", "t", "yes", "y"):
        return True
    if low in ("false", "f", "no", "n"):
        return False
    return v


def _maybe_number(v: Any) -> Any:
    if not isinstance(v, str):
        return v
    s = v.strip()
    if s and (s.isdigit() or (s.startswith("-") and s[1:].isdigit())):
        return int(s)
    try:
        return float(s)
    except ValueError:
        return v


def _normalize_kwargs_types(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Normalize job kwargs right before module.run(**kwargs):

      • Keys ending with "_path" keep their string value untouched.
      • Strings that look like JSON ({...} or [...]) are parsed.
      • Other strings have common bool/number forms coerced.
      • Non-strings pass through.
    """
    if not kwargs:
        return {}

    normalized: dict[str, object] = {}
    for k, v in kwargs.items():
        if not isinstance(v, str) or (isinstance(k, str) and k.endswith("_path")):
            normalized[k] = v
            continue

        s = v.strip()
        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                normalized[k] = json.loads(s)
                continue
            except json.JSONDecodeError:
                pass
        normalized[k] = _maybe_number(_maybe_bool(s))

    return normalized


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """
    Import `module_path` (or `<module_path>.main`) and return its `run` callable.
    `job_discovery` is shorthand for `modules.job_discovery`.
    """
    candidates = [module_path]
    if "." not in module_path:
        candidates.insert(0, f"modules.{module_path}")

    last_err: Exception | None = None
    for name in candidates:
        for target in (name, f"{name}.main"):
            try:
                mod = importlib.import_module(target)
            except ModuleNotFoundError as e:
                # Only swallow "this module does not exist", not errors inside it.
                if e.name and target.startswith(e.name):
                    last_err = e
                    continue
                raise
            run = getattr(mod, "run", None)
            if callable(run):
                return run  # type: ignore[no-any-return]
    if last_err is not None:
        raise last_err
    raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")


def _emit_activity(record: dict[str, Any]) -> None:
    try:
        write_activity_log(record)
    except Exception as e:
        log.warning("write_activity_log failed: %s", e)


@dataclass
class RunResult:
    ok: bool
    message: str
    meta: dict[str, Any] | None = None


def _coerce_result(value: Any) -> RunResult:
    """
    Normalize module return into a RunResult.

    Acceptable shapes:
      - dict  -> meta (may include 'message' and 'status')
      - None  -> no output
      - str   -> message
    """
    if isinstance(value, dict):
        return RunResult(
            ok=value.get("status") != "failed",
            message=str(value.get("message", "OK")),
            meta=value,
        )
    if value is None:
        return RunResult(ok=True, message="OK")
    if isinstance(value, str):
        return RunResult(ok=True, message=value)
    raise TypeError("Module return must be one of: dict, None or str")


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    trigger_type: str = "manual",
    job_context: dict[str, object] | None = None,
    timeout_sec: int | None = None,
) -> tuple[RunResult, str]:
    """
    Execute a module's run(**kwargs) once.

    Returns:
        (RunResult, run_id)
    Raises:
        Propagates exceptions from module execution after logging them.
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
        "pid": os.getpid(),
    }
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    kw = _normalize_kwargs_types(kwargs)
    run_callable = _resolve_callable(module)

    exc: BaseException | None = None
    t0 = datetime.now(timezone.utc)
    try:
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner")
        try:
            fut = pool.submit(run_callable, **kw)
            value = fut.result(timeout=timeout_sec) if timeout_sec else fut.result()
        finally:
            # Do not block on a timed-out worker; it finishes in the background.
            pool.shutdown(wait=False)
        result = _coerce_result(value)
    except FutureTimeout:
        exc = TimeoutError(f"Module run timed out after {timeout_sec}s")
        result = RunResult(ok=False, message=str(exc), meta={"timeout_sec": timeout_sec})
    except Exception as e:
        exc = e
        result = RunResult(ok=False, message=str(e), meta={"exception_type": type(e).__name__})
    duration_ms = int((datetime.now(timezone.utc) - t0).total_seconds() * 1000)

    _emit_activity({
        "ts": now_iso(),
        "event": "module_run",
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "ok": result.ok,
        "message": result.message,
        "duration_ms": duration_ms,
        "context": context,
        "kwargs": kw,
        "meta": result.meta or {},
    })

    if exc:
        raise exc
    return result, run_id
