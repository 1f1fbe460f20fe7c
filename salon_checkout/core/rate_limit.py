"""Fixed-window request limiting keyed by client address and route.

Counters live in Redis when ``REDIS_URL`` is configured so every instance
shares them; otherwise, or while Redis is unreachable, a per-process TTL cache
is used.
"""
import threading
import time
from typing import Optional, Protocol, Sequence
import redis
from cachetools import TTLCache
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response
from .logging_config import get_logger

logger = get_logger(__name__)

class CounterStore(Protocol):
    def incr(self, key: str, window_seconds: int) -> int: ...

class LocalCounterStore:
    def __init__(self, window_seconds: int = 60, maxsize: int = 10000):
        self._counts: TTLCache = TTLCache(maxsize=maxsize, ttl=window_seconds)
        self._lock = threading.Lock()

    def incr(self, key: str, window_seconds: int) -> int:
        with self._lock:
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count
            return count

class RedisCounterStore:
    def __init__(self, client: redis.Redis, fallback: Optional[LocalCounterStore] = None):
        self.client = client
        self.fallback = fallback or LocalCounterStore()

    def incr(self, key: str, window_seconds: int) -> int:
        try:
            pipe = self.client.pipeline()
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            count, _ = pipe.execute()
            return int(count)
        except redis.RedisError as e:
            logger.warning(f"Rate limit store unavailable, using local counters: {e}")
            return self.fallback.incr(key, window_seconds)

def build_counter_store(redis_url: Optional[str], window_seconds: int = 60) -> CounterStore:
    if not redis_url:
        return LocalCounterStore(window_seconds)
    return RedisCounterStore(redis.from_url(redis_url, socket_connect_timeout=1))

class RateLimitRule:
    def __init__(self, path_prefix: str, limit: int):
        self.path_prefix = path_prefix
        self.limit = limit

class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the global limit to every request and the first matching rule's
    limit to its route prefix, each counted separately.
    """

    def __init__(self, app, store: CounterStore, default_limit: int,
                 rules: Sequence[RateLimitRule] = (), window_seconds: int = 60):
        super().__init__(app)
        self.store = store
        self.default_limit = default_limit
        self.rules = list(rules)
        self.window_seconds = window_seconds

    def _key(self, request: Request, scope: str) -> str:
        client = request.client.host if request.client else "unknown"
        window = int(time.time() // self.window_seconds)
        return f"ratelimit:{scope}:{client}:{request.url.path}:{window}"

    async def dispatch(self, request: Request, call_next) -> Response:
        limit = self.default_limit
        count = self.store.incr(self._key(request, "global"), self.window_seconds)
        for rule in self.rules:
            if request.url.path.startswith(rule.path_prefix):
                rule_count = self.store.incr(self._key(request, rule.path_prefix), self.window_seconds)
                # Report whichever budget is closer to exhaustion
                if rule.limit - rule_count < limit - count:
                    limit, count = rule.limit, rule_count
                break

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, limit - count)),
        }
        if count > limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please slow down."},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
