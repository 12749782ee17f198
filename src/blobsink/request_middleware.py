from __future__ import annotations

import json
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from blobsink.trace_context import new_request_id, reset_context, set_context

access_logger = logging.getLogger("blobsink.access")


def _header_subset(request: Request) -> dict:
    keys = ("user-agent", "content-type", "content-length", "host", "x-request-id", "x-correlation-id")
    out = {}
    for key in keys:
        val = request.headers.get(key)
        if val:
            out[key] = val
    return out


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """
    Gives every request a correlation id and writes one JSON access line per request.
    Slow or failed requests are logged at WARNING.
    """
    def __init__(self, app, *, slow_ms: int = 750):
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        request_id = new_request_id()
        request.state.request_id = request_id
        tokens = set_context(request_id=request_id)
        status = 500
        try:
            resp = await call_next(request)
            status = resp.status_code
            resp.headers["x-blobsink-request-id"] = request_id
            return resp
        finally:
            dur_ms = (time.time() - start) * 1000.0
            record = {
                "kind": "req_end",
                "ts": time.time(),
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": int(status),
                "duration_ms": round(dur_ms, 3),
                "meta": {
                    "client": request.client.host if request.client else None,
                    "headers": _header_subset(request),
                },
            }
            level = logging.WARNING if status >= 500 or dur_ms >= self.slow_ms else logging.INFO
            access_logger.log(level, json.dumps(record))
            reset_context(tokens)
