"""
Catalog API - Rate Limiting
===========================
Token bucket rate limiting per client address.
"""

import time
from typing import Dict, Optional
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import get_logger
import metrics as app_metrics

logger = get_logger(__name__)


@dataclass
class RateLimitBucket:
    """Token bucket for rate limiting."""
    capacity: int
    refill_rate: float  # tokens per second
    tokens: float = field(init=False)
    last_refill: float = field(init=False)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_refill = time.monotonic()

    def refill(self):
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill

        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: int = 1) -> bool:
        """
        Try to consume tokens.

        Returns:
            True if tokens consumed, False if insufficient
        """
        self.refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True

        return False

    def get_wait_time(self, tokens: int = 1) -> float:
        """Get time to wait for tokens to be available."""
        self.refill()

        if self.tokens >= tokens:
            return 0.0

        tokens_needed = tokens - self.tokens
        return tokens_needed / self.refill_rate


class RateLimiter:
    """
    Token bucket rate limiter.

    Allows ``max_requests`` per ``window_seconds`` for each client, refilled
    continuously so bursts drain the bucket and quiet periods restore it.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 900.0,
        scope: str = "general",
    ):
        """
        Initialize rate limiter.

        Args:
            max_requests: Requests allowed per window (also the burst size)
            window_seconds: Length of the window in seconds
            scope: Label used in logs and metrics
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.scope = scope
        self.refill_rate = max_requests / window_seconds

        self._buckets: Dict[str, RateLimitBucket] = {}

    def _get_bucket(self, client_id: str) -> RateLimitBucket:
        """Get or create bucket for client."""
        if client_id not in self._buckets:
            self._buckets[client_id] = RateLimitBucket(
                capacity=self.max_requests,
                refill_rate=self.refill_rate,
            )

        return self._buckets[client_id]

    def check_rate_limit(self, client_id: str) -> tuple[bool, Optional[float]]:
        """
        Check if request is allowed under rate limits.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        bucket = self._get_bucket(client_id)
        if not bucket.consume():
            wait_time = bucket.get_wait_time()
            logger.warning(
                "Client rate limit exceeded",
                client_id=client_id,
                scope=self.scope,
                wait_time=wait_time,
            )
            app_metrics.rate_limit_rejections_total.labels(scope=self.scope).inc()
            return False, wait_time

        return True, None

    def cleanup_stale_buckets(self, max_age: Optional[float] = None):
        """Remove buckets for clients that haven't been seen recently."""
        max_age = max_age if max_age is not None else self.window_seconds * 2
        now = time.monotonic()
        stale_clients = [
            client_id
            for client_id, bucket in self._buckets.items()
            if now - bucket.last_refill > max_age
        ]

        for client_id in stale_clients:
            del self._buckets[client_id]

        if stale_clients:
            logger.debug("Cleaned up stale rate limit buckets", count=len(stale_clients))


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limited_response(retry_after: float) -> JSONResponse:
    """Build the 429 body shared by the middleware and the login dependency."""
    retry_after_seconds = max(1, int(retry_after + 0.999))
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": "Too many requests, please try again later",
            "error": "RateLimitExceeded",
            "retry_after": retry_after_seconds,
        },
        headers={"Retry-After": str(retry_after_seconds)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting middleware for FastAPI.

    Applies the general per-client limit to every API route.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: float = 900.0,
        path_prefix: str = "/api/",
    ):
        """
        Initialize middleware.

        Args:
            app: FastAPI application
            max_requests: Requests allowed per client per window
            window_seconds: Window length in seconds
            path_prefix: Only paths under this prefix are limited
        """
        super().__init__(app)
        self.limiter = RateLimiter(
            max_requests=max_requests,
            window_seconds=window_seconds,
            scope="general",
        )
        self.path_prefix = path_prefix
        self._last_cleanup = time.monotonic()

    async def dispatch(self, request: Request, call_next):
        """Process request with rate limiting."""
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        allowed, retry_after = self.limiter.check_rate_limit(client_address(request))

        if not allowed:
            return rate_limited_response(retry_after)

        # Periodic cleanup of stale buckets
        now = time.monotonic()
        if now - self._last_cleanup > 300:  # Every 5 minutes
            self.limiter.cleanup_stale_buckets()
            self._last_cleanup = now

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.limiter.max_requests)

        return response
