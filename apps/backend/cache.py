"""
Catalog API - Response Cache
============================
In-memory LRU cache of successful GET responses with TTL tiers.

Tiers:
- short: aggregate statistics
- medium: listings and single records
- long: company detail and products by company

Any successful write under the API prefix clears the whole cache.
Streaming routes are never cached.
"""

import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from config import Settings
from logging_config import get_logger
import metrics as app_metrics

logger = get_logger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
CACHED_HEADERS = ("content-type",)


@dataclass
class CachedResponse:
    status_code: int
    body: bytes
    headers: Dict[str, str]
    expires_at: float


@dataclass
class ResponseCache:
    """
    Bounded LRU mapping of request keys to rendered responses.

    Expired entries are dropped lazily on lookup; the least recently used
    entry is evicted once ``max_entries`` is reached.
    """
    max_entries: int = 1024
    clock: Callable[[], float] = time.monotonic
    _entries: "OrderedDict[str, CachedResponse]" = field(default_factory=OrderedDict, init=False)
    hits: int = field(default=0, init=False)
    misses: int = field(default=0, init=False)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CachedResponse]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if entry.expires_at <= self.clock():
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return entry

    def set(self, key: str, status_code: int, body: bytes, headers: Dict[str, str], ttl: float) -> None:
        self._entries[key] = CachedResponse(
            status_code=status_code,
            body=body,
            headers=headers,
            expires_at=self.clock() + ttl,
        )
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        removed = len(self._entries)
        self._entries.clear()
        return removed

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}


def default_cache_rules(settings: Settings, prefix: str = "/api/v1") -> List[Tuple[Pattern, float]]:
    """Path patterns mapped to TTLs, checked in order."""
    base = re.escape(prefix)
    entities = "(companies|users|products)"
    return [
        (re.compile(rf"^{base}/{entities}/stats$"), settings.cache_ttl_short_seconds),
        (re.compile(rf"^{base}/companies/\d+$"), settings.cache_ttl_long_seconds),
        (re.compile(rf"^{base}/products/company/\d+$"), settings.cache_ttl_long_seconds),
        (re.compile(rf"^{base}/{entities}/?$"), settings.cache_ttl_medium_seconds),
        (re.compile(rf"^{base}/{entities}/\d+$"), settings.cache_ttl_medium_seconds),
        (re.compile(rf"^{base}/products/status/-?\d+$"), settings.cache_ttl_medium_seconds),
    ]


def cache_key(request: Request) -> str:
    query = "&".join(f"{k}={v}" for k, v in sorted(request.query_params.multi_items()))
    return f"{request.method}:{request.url.path}?{query}"


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """
    Serve cached GET responses and invalidate on writes.

    Responses carry ``X-Cache: HIT`` or ``X-Cache: MISS`` on cacheable routes.
    """

    def __init__(
        self,
        app,
        cache: ResponseCache,
        rules: List[Tuple[Pattern, float]],
        prefix: str = "/api/v1",
    ):
        super().__init__(app)
        self.cache = cache
        self.rules = rules
        self.prefix = prefix

    def _ttl_for(self, path: str) -> Optional[float]:
        if "/stream" in path:
            return None
        for pattern, ttl in self.rules:
            if pattern.match(path):
                return ttl
        return None

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if request.method in WRITE_METHODS:
            response = await call_next(request)
            if path.startswith(self.prefix) and not path.endswith("/login") and response.status_code < 400:
                removed = self.cache.clear()
                app_metrics.cache_invalidations_total.inc()
                logger.debug("Response cache cleared", path=path, entries=removed)
            return response

        ttl = self._ttl_for(path) if request.method == "GET" else None
        if ttl is None:
            return await call_next(request)

        key = cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            app_metrics.cache_hits_total.inc()
            return Response(
                content=cached.body,
                status_code=cached.status_code,
                headers={**cached.headers, "X-Cache": "HIT"},
            )

        app_metrics.cache_misses_total.inc()
        response = await call_next(request)

        if response.status_code != 200:
            response.headers["X-Cache"] = "MISS"
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        headers = {
            name: value
            for name, value in response.headers.items()
            if name.lower() in CACHED_HEADERS
        }
        self.cache.set(key, response.status_code, body, headers, ttl)

        fresh = Response(
            content=body,
            status_code=response.status_code,
            headers={k: v for k, v in response.headers.items() if k.lower() != "content-length"},
        )
        fresh.headers["X-Cache"] = "MISS"
        return fresh
