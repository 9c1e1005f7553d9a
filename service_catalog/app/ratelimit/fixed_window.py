"""
Fixed-window rate limiter for the Catalog Service.
"""

import math
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import RateLimitError
from shared.logging import get_logger


# Sweep stale windows once the table grows past this many clients
SWEEP_THRESHOLD = 10000


class FixedWindowRateLimiter:
    """Per-client request budget over a fixed time window.

    State is process-local; each replica enforces its own budget.
    """

    def __init__(self, max_requests: int = 100, window_seconds: int = 900,
                 *, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.logger = get_logger("catalog.rate_limiter")
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}  # client -> (window_start, count)

    def check_rate_limit(self, client_id: str) -> Dict[str, Any]:
        """Count one request for ``client_id`` and report whether it is allowed."""
        now = self._clock()
        if len(self._windows) > SWEEP_THRESHOLD:
            self.purge_expired()

        window_start, count = self._windows.get(client_id, (now, 0))
        if now - window_start >= self.window_seconds:
            window_start, count = now, 0

        reset_in = max(0, math.ceil(window_start + self.window_seconds - now))

        if count + 1 > self.max_requests:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                current_count=count,
                limit=self.max_requests
            )
            return {
                "allowed": False,
                "current_count": count,
                "limit": self.max_requests,
                "remaining": 0,
                "reset_in_seconds": reset_in,
                "retry_after": reset_in
            }

        self._windows[client_id] = (window_start, count + 1)
        return {
            "allowed": True,
            "current_count": count + 1,
            "limit": self.max_requests,
            "remaining": max(0, self.max_requests - count - 1),
            "reset_in_seconds": reset_in
        }

    def reset_rate_limit(self, client_id: str) -> None:
        self._windows.pop(client_id, None)

    def purge_expired(self) -> int:
        """Forget clients whose window has elapsed."""
        now = self._clock()
        stale = [
            client_id for client_id, (start, _) in self._windows.items()
            if now - start >= self.window_seconds
        ]
        for client_id in stale:
            del self._windows[client_id]
        return len(stale)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware for FastAPI."""

    def __init__(self, app, rate_limiter: FixedWindowRateLimiter,
                 exempt_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.exempt_paths = frozenset(exempt_paths or ())

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        result = self.rate_limiter.check_rate_limit(self._get_client_id(request))

        if not result["allowed"]:
            error = RateLimitError(details={
                "limit": result["limit"],
                "reset_in_seconds": result["reset_in_seconds"],
            })
            response = JSONResponse(
                status_code=error.status_code,
                content=error.to_response(path=request.url.path).model_dump(exclude_none=True),
            )
            response.headers["Retry-After"] = str(result["retry_after"])
        else:
            response = await call_next(request)

        self._set_rate_limit_headers(response, result)
        return response

    @staticmethod
    def _set_rate_limit_headers(response, rate_result: Dict[str, Any]) -> None:
        """Propagate rate limiting metadata via standard headers."""
        response.headers["X-RateLimit-Limit"] = str(rate_result["limit"])
        response.headers["X-RateLimit-Remaining"] = str(rate_result["remaining"])
        response.headers["X-RateLimit-Reset"] = str(rate_result["reset_in_seconds"])

    @staticmethod
    def _get_client_id(request: Request) -> str:
        """Extract the caller IP from standard headers."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"
