# lotbot/transport/middleware.py
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from lotbot.infra.logging_config import get_logger, LogContext
from lotbot.infra.metrics import inc_counter, observe_histogram

logger = get_logger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# Polled by the platform every few seconds
QUIET_PATHS = {"/health"}


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse a well-formed ``X-Request-ID`` or mint one; echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request plus the ``http_request_duration_ms`` histogram."""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        path = request.url.path
        log_ctx = LogContext(logger, request_id=getattr(request.state, "request_id", None))
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            log_ctx.error(
                f"{request.method} {path} raised {exc.__class__.__name__} after {_elapsed_ms(started):.1f}ms",
                exc_info=True,
            )
            raise

        duration_ms = _elapsed_ms(started)
        observe_histogram("http_request_duration_ms", duration_ms, path=path)

        level = "debug" if path in QUIET_PATHS and response.status_code < 400 else "info"
        getattr(log_ctx, level)(
            f"{request.method} {path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client_ip": request.client.host if request.client else None,
            },
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort JSON 500 for exceptions that escaped the route handlers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", None)
            LogContext(logger, request_id=request_id).error(
                f"Unhandled exception: {exc.__class__.__name__}: {exc}",
                exc_info=True,
            )
            inc_counter("http_unhandled_exceptions_total")

            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "Internal server error", "request_id": request_id},
            )
