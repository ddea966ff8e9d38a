# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the discovery scheduler via service.scheduler.start()
    - Starts the HTTP API in a secondary thread when api.enabled
    - SIGINT/SIGTERM stop both; the in-flight batch ends after its current source

run MODULE [--kwargs k=v ...] [--timeout SEC]
    - Executes a module ad-hoc via runner.run_module_once(...)
    - e.g. `run job_discovery --kwargs start_index=5 batch_size=3`

list-sources
    - Prints the source registry the configured pipeline would crawl

validate-config
    - Loads/validates the service config and the discovery settings; nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from types import SimpleNamespace
from typing import Any

from modules.job_discovery.lib.config import Settings
from service import api as _api
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    Values that are valid JSON (numbers, true/false, arrays, objects) are decoded;
    anything else stays a raw string.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, ...]], headers: tuple[str, ...]) -> None:
    """Plain fixed-width table."""
    rows = list(rows)
    widths = [max(len(h), *(len(r[i]) for r in rows)) if rows else len(h) for i, h in enumerate(headers)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    print(sep)
    for r in rows:
        print("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    print(sep)


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        settings = Settings.from_env_and_kwargs(_config_schema.discovery_kwargs(cfg))
        print(f"OK: configuration is valid ({len(settings.registry())} sources, batch size {settings.batch_size}).")
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.debug("Configuration validation failed", exc_info=True)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_sources(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        settings = Settings.from_env_and_kwargs(_config_schema.discovery_kwargs(cfg))
        rows = [(str(i), s.name, s.category, s.base_url) for i, s in enumerate(settings.registry())]
        _print_table(rows, headers=("#", "SOURCE", "CATEGORY", "URL"))
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.debug("Failed to list sources", exc_info=True)
        print(f"ERROR: failed to list sources: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    kwargs = _parse_kv_pairs(args.kwargs or [])
    LOG.debug("Run module %s with kwargs=%s", args.module, kwargs)

    try:
        result, run_id = _runner.run_module_once(
            module=args.module,
            kwargs=kwargs,
            trigger_type="adhoc",
            timeout_sec=args.timeout,
        )
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "where": "cli.run",
            "module": args.module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1

    print(result.message)
    if args.json and result.meta:
        print(json.dumps(result.meta, indent=2, default=str))
    print(f"run_id={run_id}")
    return 0 if result.ok else 1


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the scheduler (and HTTP API) until a termination signal arrives.
    Shutdown order: scheduler first so no new batch starts, then the API.
    """
    L.write_activity_log({"event": "serve_start"})

    stop_event = threading.Event()
    running = SimpleNamespace(sched=None, api=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        cfg = _config_schema.load_config(args.config)
        running.sched = _scheduler.start(config_path=args.config)
        LOG.info("Scheduler started: jobs=%s", list(running.sched.get_job_ids()))

        api_cfg = cfg.get("api") or {}
        if api_cfg.get("enabled", True):
            settings = Settings.from_env_and_kwargs(_config_schema.discovery_kwargs(cfg))
            app = _api.create_app(running.sched.pipeline, running.sched, degraded_after=settings.degraded_after)
            running.api = _api.start(app, host=str(api_cfg.get("host", "127.0.0.1")), port=int(api_cfg.get("port", 8080)))

        # Main wait loop (respond quickly to signals)
        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running.sched)
        _safe_stop("api", running.api)
        L.write_activity_log({"event": "serve_stop"})
        return 0

    except KeyboardInterrupt:
        _safe_stop("scheduler", running.sched)
        _safe_stop("api", running.api)
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _safe_stop("scheduler", running.sched)
        _safe_stop("api", running.api)
        return 1


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop() then join() on a controller."""
    if handle is None:
        return
    try:
        handle.stop()
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)
    try:
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error joining %s", name)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job discovery service command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or built-in defaults).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the discovery scheduler and HTTP API.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument("module", help="Module name to run (e.g., job_discovery).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Keyword arguments for the module (JSON values supported).",
    )
    sp.add_argument("--timeout", type=int, default=None, help="Abort after this many seconds.")
    sp.add_argument("--json", action="store_true", help="Print the run's meta as JSON.")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("list-sources", help="Print the configured source registry.")
    sp.set_defaults(func=cmd_list_sources)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
