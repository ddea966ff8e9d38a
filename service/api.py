# service/api.py
"""
Read-only HTTP view of the discovery cache, plus the manual scrape trigger.

Routes:
  GET  /api/cache/jobs[?source=NAME]
  GET  /api/cache/stats
  GET  /api/cache/logs
  GET  /api/cache/health[?threshold=N]
  GET  /api/scheduler/status
  POST /api/jobs/scrape-official      runs one batch now; 409 if one is in flight,
                                      503 while shutting down, 500 on an unexpected error
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from flask import Flask, jsonify, request
from werkzeug.serving import make_server

from modules.job_discovery.lib.pipeline import DiscoveryPipeline

from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)


def create_app(pipeline: DiscoveryPipeline, controller: Any = None, degraded_after: int = 3) -> Flask:
    """
    Build the Flask app around a live pipeline.

    `controller` (a SchedulerController) is optional; with it the manual
    trigger goes through the scheduler's guarded runner and the status route
    reports the next scheduled run.
    """
    app = Flask(__name__)
    app.json.sort_keys = False

    @app.get("/api/cache/jobs")
    def cache_jobs():
        source = request.args.get("source")
        jobs = [r.to_dict() for r in pipeline.cache.get(source)]
        return jsonify({"source": source, "count": len(jobs), "jobs": jobs})

    @app.get("/api/cache/stats")
    def cache_stats():
        return jsonify(pipeline.cache.stats())

    @app.get("/api/cache/logs")
    def cache_logs():
        return jsonify([e.to_dict() for e in pipeline.cache.get_logs()])

    @app.get("/api/cache/health")
    def cache_health():
        raw = request.args.get("threshold")
        try:
            threshold = int(raw) if raw else degraded_after
        except ValueError:
            return jsonify({"error": f"threshold must be an integer (got {raw!r})"}), 400
        if threshold < 1:
            return jsonify({"error": "threshold must be >= 1"}), 400
        degraded = pipeline.cache.degraded_sources(threshold)
        return jsonify({"threshold": threshold, "degraded": degraded, "healthy": not degraded})

    @app.get("/api/scheduler/status")
    def scheduler_status():
        nrt = controller.next_run_time() if controller is not None else None
        return jsonify({
            "running": bool(controller.running) if controller is not None else False,
            "in_flight": pipeline.in_flight,
            "current_index": pipeline.current_index,
            "batch_size": pipeline.batch_size,
            "registry_size": len(pipeline.registry),
            "next_sources": [s.name for s in pipeline.next_sources()],
            "next_run_time": nrt.isoformat() if nrt else None,
            "ai_available": pipeline.extractor.available,
        })

    @app.post("/api/jobs/scrape-official")
    def scrape_official():
        LOG.info("Manual scrape requested from %s", request.remote_addr)
        try:
            if controller is not None:
                outcome = controller.trigger_now("manual")
            else:
                outcome = pipeline.run_batch(trigger_type="manual")
        except Exception as e:
            LOG.exception("Manual scrape failed")
            return jsonify({"error": f"{type(e).__name__}: {e}"}), 500

        if outcome is None:
            if pipeline.stop_requested:
                return jsonify({"error": "the service is shutting down"}), 503
            return jsonify({"error": "a discovery batch is already running"}), 409

        body = outcome.to_dict()
        if outcome.status == "failed":
            return jsonify(body), 503
        return jsonify(body)

    return app


class ApiServer:
    """Controller for the werkzeug server thread (stop/join like the scheduler's)."""

    def __init__(self, server: Any, thread: threading.Thread):
        self._server = server
        self._thread = thread

    @property
    def port(self) -> int:
        return int(self._server.server_port)

    def stop(self) -> None:
        self._server.shutdown()

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)


def start(app: Flask, host: str = "127.0.0.1", port: int = 8080) -> ApiServer:
    """Serve `app` from a daemon thread (non-blocking). Port 0 picks a free port."""
    server = make_server(host, port, app, threaded=True)
    t = threading.Thread(target=server.serve_forever, name="discovery-api", daemon=True)
    t.start()
    LOG.info("HTTP API listening on http://%s:%d", host, server.server_port)
    try:
        write_activity_log({"event": "api_start", "host": host, "port": server.server_port})
    except Exception:
        LOG.debug("write_activity_log failed for api_start", exc_info=True)
    return ApiServer(server, t)
