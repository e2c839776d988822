"""
Request id and timing.

Before each request a request id is taken from the incoming
``X-Request-ID`` header (or generated) and a start time recorded. After
the request, ``X-Request-ID`` and ``X-Request-Duration-Ms`` are echoed on
the response and one access-log line is written:

    WARNING  slower than SLOW_REQUEST_MS (default 1000)
    ERROR    5xx responses
    INFO     everything else

The health check is not logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger("portal.access")

QUIET_PATHS = frozenset({"/api/v1/health"})
DEFAULT_SLOW_REQUEST_MS = 1000


def _level_for(status: int, duration_ms: float, slow_ms: float) -> int:
    if duration_ms > slow_ms:
        return logging.WARNING
    if status >= 500:
        return logging.ERROR
    return logging.INFO


def init_request_timing(app: Flask):
    slow_ms = app.config.get("SLOW_REQUEST_MS", DEFAULT_SLOW_REQUEST_MS)

    @app.before_request
    def _begin():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.request_start = time.perf_counter()

    @app.after_request
    def _finish(response):
        started = g.get("request_start")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"
        if request.path in QUIET_PATHS:
            return response

        identity = g.get("identity")
        logger.log(
            _level_for(response.status_code, elapsed_ms, slow_ms),
            "%s %s -> %d",
            request.method, request.path, response.status_code,
            extra={
                "request_id": g.request_id,
                "user_id": identity.user_id if identity else None,
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": elapsed_ms,
                "remote_addr": request.remote_addr,
            },
        )
        return response
