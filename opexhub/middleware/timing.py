"""
Request timing middleware.

Every response carries ``X-Request-ID`` (echoed from the request when the
caller supplied one) and ``X-Request-Duration-Ms``. Access lines are logged
with the route's workflow ids so they join up with service log lines:

    5xx                      ERROR
    slower than threshold    WARNING
    mutating /api/ call      INFO
    everything else          DEBUG
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_HEALTH_PREFIX = "/api/v1/health/"
_MUTATING = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_ROUTE_IDS = ("initiative_id", "transaction_id", "entry_id")


def _level_for(status: int, duration_ms: float, threshold_ms: int) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > threshold_ms:
        return logging.WARNING
    if request.method in _MUTATING and request.path.startswith("/api/"):
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register the before/after hooks on ``app``."""
    threshold_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path.startswith(_HEALTH_PREFIX):
            return response

        extra = {
            "request_id": g.request_id,
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "actor_id": getattr(g, "actor_id", None),
        }
        view_args = request.view_args or {}
        extra.update({key: view_args[key] for key in _ROUTE_IDS if key in view_args})

        logger.log(
            _level_for(response.status_code, duration_ms, threshold_ms),
            "%s %s -> %d (%.0fms)", request.method, request.path, response.status_code, duration_ms,
            extra=extra,
        )
        return response
