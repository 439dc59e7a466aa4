"""HTTP middleware for error conversion and request logging."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from hangar.lib.logging_config import get_logger

logger = get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert unhandled exceptions into a 500 JSON error body."""

    def __init__(self, app: ASGIApp, debug: bool = False) -> None:
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception(
                f"Unhandled error on {request.method} {request.url.path}: {exc}"
            )
            detail = str(exc) if self.debug else "Internal server error"
            return JSONResponse(status_code=500, content={"error": detail})


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status code and duration of every request."""

    def __init__(self, app: ASGIApp, debug: bool = False) -> None:
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        message = (
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.1f}ms)"
        )
        if self.debug:
            logger.info(message)
        else:
            logger.debug(message)
        return response
