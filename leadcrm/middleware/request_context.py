"""Request context middleware: one id per request, stamped on every log line.

Requests interleave on the event loop, so log lines from two tenants
arrive mixed together.  The request id (taken from X-Request-ID when the
caller sends one, generated otherwise) is what pulls a single request's
lines back out.

It lives in a ``contextvars.ContextVar`` rather than a thread-local:
concurrent requests share a thread, but each asyncio task gets its own
copy of the context.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestContextFilter(logging.Filter):
    """Copies the current request id onto every LogRecord.

    A filter, not a formatter: formatters can only read attributes that
    are already on the record.  setup_logging() attaches it to the output
    handler, so records from every module's logger pass through it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, time the request, log one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            request_id_var.reset(token)
            raise
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers["X-Request-ID"] = req_id
        request_id_var.reset(token)
        return response
