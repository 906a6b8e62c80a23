"""
HTTP middleware components for request/response processing.

This module provides middleware for error handling and request timing.
"""

import logging
import time
import uuid
from typing import Any, Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns unhandled errors into a JSON 500 response."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception(f"Unhandled error in {request.method} {request.url.path}: {e}")

            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": str(e) if request.app.debug else "Internal server error",
                    "request_id": getattr(request.state, "request_id", None)
                }
            )


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs slow requests."""

    def __init__(self, app: Any, slow_request_threshold: float = 1.0) -> None:
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self.request_count = 0

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        self.request_count += 1
        if duration > self.slow_request_threshold:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {duration:.3f}s")

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
