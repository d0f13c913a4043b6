# ============================================================================
# File: api/middleware.py
# ============================================================================

import time
import uuid
import logging
from typing import Dict, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Injects:
    - request_id
    - api_latency_ms
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.perf_counter()

        # Attach request_id to request state
        request.state.request_id = request_id

        response: Response = await call_next(request)

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({latency_ms}ms)"
        )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed one-minute window per client address.

    Answers 429 with the error envelope and a Retry-After header once a
    client exceeds ``limit_per_minute``. A limit of 0 disables the check.
    """

    EXEMPT_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")

    def __init__(self, app, limit_per_minute: int = 0):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute
        self._windows: Dict[str, Tuple[int, int]] = {}
        self._current_window = 0

    async def dispatch(self, request: Request, call_next):
        if self.limit_per_minute <= 0 or request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        now = time.time()
        window = int(now // 60)
        if window != self._current_window:
            # Counters from earlier windows can never block again
            self._windows = {key: value for key, value in self._windows.items() if value[0] == window}
            self._current_window = window
        _, count = self._windows.get(client, (window, 0))
        count += 1
        self._windows[client] = (window, count)

        if count > self.limit_per_minute:
            retry_after = max(1, int(60 - now % 60))
            logger.warning(f"Rate limit exceeded for {client} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "details": {"limit_per_minute": self.limit_per_minute, "retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)


class ErrorEnvelopeMiddleware(BaseHTTPMiddleware):
    """
    Turns unhandled exceptions into the 500 error envelope.

    Registered inside CORSMiddleware so browser clients can read the body of
    a failed request.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "details": {"message": str(exc)}},
            )
