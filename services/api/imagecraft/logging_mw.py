# services/api/imagecraft/logging_mw.py

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .config import settings

LOG = logging.getLogger("imagecraft")

REDACT_HEADERS = {"authorization", "cookie", "set-cookie", "x-session-id"}

_REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms")
_QUIET_PATHS = {"/health"}

def _redact_headers(headers: dict) -> dict:
    out = {}
    for k, v in headers.items():
        lk = k.lower()
        if lk in REDACT_HEADERS:
            out[k] = "[REDACTED]"
        else:
            out[k] = v if len(v) < 200 else (v[:200] + "…")
    return out

class _RequestFieldDefaults(logging.Filter):
    # module loggers don't carry the request extras; keep the format usable
    def filter(self, record: logging.LogRecord) -> bool:
        for name in _REQUEST_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = rid
        start = time.perf_counter()

        # Never log request bodies (uploaded images); the declared size is enough
        safe_headers = _redact_headers(dict(request.headers))

        try:
            response: Response = await call_next(request)
            status = response.status_code
        except Exception:
            status = 500
            raise
        finally:
            dur_ms = int((time.perf_counter() - start) * 1000)
            path = request.url.path

            LOG.log(
                _level_for(path, status),
                "request",
                extra={
                    "request_id": rid,
                    "method": request.method,
                    "path": path,
                    "query": str(request.url.query)[:400],
                    "status": status,
                    "duration_ms": dur_ms,
                    "upload_bytes": request.headers.get("content-length"),
                    "client": request.client.host if request.client else None,
                    "headers": safe_headers,
                },
            )

        response.headers["X-Request-Id"] = rid
        return response

def _level_for(path: str, status: int) -> int:
    if status >= 500:
        return logging.WARNING
    if path in _QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO

def configure_logging(level: str | None = None):
    handler = logging.StreamHandler()
    handler.addFilter(_RequestFieldDefaults())
    handler.setFormatter(
        logging.Formatter(
            "%(levelname)s %(name)s %(message)s | %(request_id)s %(method)s %(path)s %(status)s %(duration_ms)s"
        )
    )

    root = logging.getLogger("imagecraft")
    root.setLevel((level or settings.LOG_LEVEL).upper())
    # repeated app construction (tests) must not stack handlers
    if not root.handlers:
        root.addHandler(handler)
