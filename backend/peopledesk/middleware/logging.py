"""
PeopleDesk Backend — Request Logging Middleware
=================================================

What:  One access-log line per HTTP request: method, path, status, duration.
Who:   Applied to every request via Starlette middleware, after
       RequestIDMiddleware (uses its ID for correlation).

Log line:
    POST /api/users/<id>/profile-picture 201 184.2ms [a1b2c3d4] from 10.0.0.7 (812345 bytes in)

Never logged: request bodies (uploaded images), Authorization headers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from peopledesk.middleware.request_id import request_id_var

logger = logging.getLogger("peopledesk.access")

QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request with a level chosen from the response status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO.

    Upload durations are dominated by decode and resize; serving a stored
    file is a stat plus a streamed read.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        declared_size = request.headers.get("content-length", "0")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s (%s bytes in)",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            declared_size,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
