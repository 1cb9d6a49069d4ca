import time
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable

import redis
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse


def _client_key(request: Request) -> str:
    auth = request.headers.get("authorization")
    if auth:
        return f"token:{auth[-24:]}"
    client = request.client.host if request.client else "unknown"
    return f"ip:{client}"


def _too_many(retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": {"code": "rate_limited", "message": "Too many requests", "details": {"retry_after": retry_after}}},
        headers={"Retry-After": str(retry_after)},
    )


class _LimiterBase(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int = 60, auth_boost: int = 2, exclude_paths: Iterable[str] = ()):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute
        self.auth_boost = max(1, auth_boost)
        self.exclude_paths = set(exclude_paths)

    def _limit_for(self, request: Request) -> int:
        # bearer callers get auth_boost times the anonymous limit
        if request.headers.get("authorization"):
            return self.limit_per_minute * self.auth_boost
        return self.limit_per_minute


class SlidingWindowLimiter(_LimiterBase):
    """In-process limiter. Per worker only, so dev and tests."""

    window_seconds = 60

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self.store: Dict[str, Deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exclude_paths:
            return await call_next(request)
        now = time.time()
        dq = self.store[_client_key(request)]
        while dq and now - dq[0] > self.window_seconds:
            dq.popleft()
        if len(dq) >= self._limit_for(request):
            return _too_many(max(1, int(self.window_seconds - (now - dq[0]))))
        dq.append(now)
        return await call_next(request)


class RedisRateLimiter(_LimiterBase):
    """Fixed one-minute windows counted in Redis; fails open if Redis is down."""

    def __init__(self, app, redis_url: str, prefix: str = "rl", **kwargs):
        super().__init__(app, **kwargs)
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exclude_paths:
            return await call_next(request)
        now = int(time.time())
        key = f"{self.prefix}:{_client_key(request)}:{now // 60}"
        try:
            count = self.redis.incr(key)
            if count == 1:
                self.redis.expire(key, 70)
        except redis.RedisError:
            return await call_next(request)
        if count > self._limit_for(request):
            return _too_many(60 - (now % 60))
        return await call_next(request)
