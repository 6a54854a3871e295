"""
HTTP rate limiting for the inbound webhook and operator API.

In-memory sliding window per caller. Operators are bucketed by actor id,
everything else by client address, and the inbound webhook gets its own
bucket so a chatty channel cannot starve the operator console.

Per-tenant message and cost caps are a different thing: those live in the
session manager and are checked inside the pipeline.
"""
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

UNLIMITED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


class SlidingWindowLimiter:
    def __init__(self, limit: int = 100, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + 300

    def hit(self, bucket: str) -> Tuple[bool, int]:
        """Count one request against `bucket`; returns (allowed, remaining)."""
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(cutoff)
                self._next_sweep = now + 300

            hits = self._hits.setdefault(bucket, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                return False, 0
            hits.append(now)
            return True, self.limit - len(hits)

    def _sweep(self, cutoff: float) -> None:
        idle = [bucket for bucket, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for bucket in idle:
            del self._hits[bucket]
        if idle:
            logger.debug(f"[RateLimit] dropped {len(idle)} idle buckets, {len(self._hits)} active")


def bucket_for(request: Request) -> str:
    channel = "inbound" if request.url.path.startswith("/inbound") else "api"
    actor: Optional[str] = request.headers.get("x-actor-id")
    if actor and request.headers.get("authorization", "").startswith("Bearer "):
        return f"{channel}:actor:{actor}"
    host = request.client.host if request.client else "unknown"
    return f"{channel}:ip:{host}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, requests: int = 100, window: int = 60):
        super().__init__(app)
        self.limiter = SlidingWindowLimiter(limit=requests, window_seconds=window)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNLIMITED_PATHS:
            return await call_next(request)

        bucket = bucket_for(request)
        allowed, remaining = self.limiter.hit(bucket)
        limit_header = str(self.limiter.limit)
        if not allowed:
            logger.warning(f"[RateLimit] {bucket} throttled on {request.method} {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests"},
                headers={
                    "Retry-After": str(self.limiter.window_seconds),
                    "X-RateLimit-Limit": limit_header,
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = limit_header
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
