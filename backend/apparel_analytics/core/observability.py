from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as SATimeoutError
from starlette.responses import Response

_STARTED_AT = time.monotonic()

SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "2000"))

# Health checks hit these every few seconds.
UNLOGGED_PATHS = frozenset({"/health", "/healthz"})

REQUEST_ID_HEADER = "X-Request-ID"


def uptime_seconds() -> float:
    return max(0.0, time.monotonic() - _STARTED_AT)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _app_logger(request: Request) -> logging.Logger:
    return getattr(request.app.state, "logger", None) or logging.getLogger("apparel_analytics")


def _request_id(request: Request) -> str:
    return request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex


def _request_fields(request: Request, request_id: str, started: float) -> dict[str, Any]:
    return {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
    }


def _db_pool_status() -> str | None:
    from apparel_analytics.database import engine

    status = getattr(engine.pool, "status", None)
    return status() if callable(status) else None


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """JSON 500 carrying a request id; internals stay in the log."""

    request_id = _request_id(request)
    _app_logger(request).error(
        "unhandled_exception",
        exc_info=exc,
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": request_id,
            "code": "INTERNAL_SERVER_ERROR",
        },
        headers={REQUEST_ID_HEADER: request_id},
    )


async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log one ``http_request`` line per call and echo the request id header.

    Bodies are never logged.
    """

    request_id = _request_id(request)
    log = _app_logger(request)
    started = time.perf_counter()

    try:
        response: Response = await call_next(request)
    except SATimeoutError as exc:
        fields = _request_fields(request, request_id, started)
        log.error("db_pool_timeout", extra={**fields, "pool_status": _db_pool_status(), "error": str(exc)})
        raise
    except Exception:
        log.exception("http_request_failed", extra=_request_fields(request, request_id, started))
        raise

    fields = _request_fields(request, request_id, started)
    if fields["duration_ms"] >= SLOW_REQUEST_MS:
        log.warning("slow_request", extra={**fields, "pool_status": _db_pool_status()})
    if request.url.path not in UNLOGGED_PATHS:
        log.info("http_request", extra={**fields, "status_code": response.status_code})

    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response
