"""Fixed-window rate limiting with Redis counters and an in-process fallback.

Each RateLimiter counts requests per ``{key_prefix}:{client key}``. With
Redis ready, the window is an INCR'd key whose TTL is set on the first hit.
Without Redis, or when a Redis call fails mid-request, counting falls back
to a per-process dict, so limits become per-process during an outage.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from fastapi import Request
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.exceptions import RateLimited
from app.services.redis_client import RedisConnection

logger = logging.getLogger(__name__)

KeyGenerator = Callable[[Request], Optional[str]]
LimitHook = Callable[[Request], None]

# Expired in-process buckets are swept once the table grows past this.
_PRUNE_THRESHOLD = 10_000


def default_client_key(request: Request) -> str:
    """Best-effort client fingerprint: forwarded IP, real IP, user agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.headers.get("user-agent") or "anonymous"


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class _Bucket:
    count: int
    expires_at_ms: float


class RateLimiter:
    """One independently budgeted limit.

    Args:
        window_ms: Window length in milliseconds.
        limit: Requests allowed per window.
        key_prefix: Namespace for this limiter's keys.
        redis: Shared counter holder; None or not ready means in-process only.
        key_generator: Maps a request to a client key; falling back to
            default_client_key when it returns None.
        on_limit_reached: Called with the request on every rejection.
        clock: Millisecond clock for the in-process window (tests override).
    """

    def __init__(
        self,
        *,
        window_ms: int,
        limit: int,
        key_prefix: str = "rl",
        redis: Optional[RedisConnection] = None,
        key_generator: Optional[KeyGenerator] = None,
        on_limit_reached: Optional[LimitHook] = None,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.window_ms = window_ms
        self.limit = limit
        self.key_prefix = key_prefix
        self._redis = redis
        self._key_generator = key_generator
        self._on_limit_reached = on_limit_reached
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}

    def key_for(self, request: Request) -> str:
        client_key = self._key_generator(request) if self._key_generator else None
        return f"{self.key_prefix}:{client_key or default_client_key(request)}"

    async def hit(self, request: Request) -> bool:
        """Count one request. Returns False if it is over budget."""
        key = self.key_for(request)

        allowed = await self._hit_redis(key)
        if allowed is None:
            allowed = self._hit_local(key)

        if not allowed and self._on_limit_reached is not None:
            self._on_limit_reached(request)
        return allowed

    async def _hit_redis(self, key: str) -> Optional[bool]:
        """Redis path. None means "not available, use the local fallback"."""
        client = self._redis.client if self._redis is not None else None
        if client is None:
            return None
        try:
            count = await client.incr(key)
            if count == 1:
                await client.pexpire(key, self.window_ms)
        except (RedisError, OSError) as e:
            logger.warning("Rate limit Redis call failed for %s, using in-process fallback: %s", key, e)
            return None
        return count <= self.limit

    def _hit_local(self, key: str) -> bool:
        now = self._clock()
        bucket = self._buckets.get(key)

        if bucket is None or bucket.expires_at_ms <= now:
            if len(self._buckets) >= _PRUNE_THRESHOLD:
                self._prune(now)
            self._buckets[key] = _Bucket(count=1, expires_at_ms=now + self.window_ms)
            return True

        if bucket.count >= self.limit:
            return False

        bucket.count += 1
        return True

    def _prune(self, now: float) -> None:
        expired = [k for k, b in self._buckets.items() if b.expires_at_ms <= now]
        for k in expired:
            del self._buckets[k]

    def reset(self) -> None:
        """Forget all in-process counts."""
        self._buckets.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a RateLimiter to requests whose path matches exactly.

    Args:
        rules: Path → limiter. Paths are compared without trailing slash.
    """

    def __init__(self, app, rules: Mapping[str, RateLimiter]) -> None:
        super().__init__(app)
        self._rules = {path.rstrip("/") or "/": limiter for path, limiter in rules.items()}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path.rstrip("/") or "/"
        limiter = self._rules.get(path)
        if limiter is None or request.method == "OPTIONS":
            return await call_next(request)

        if not await limiter.hit(request):
            return RateLimited().to_response()

        return await call_next(request)


def log_limit_reached(request: Request) -> None:
    logger.warning(
        "Rate limit exceeded for %s %s from %s",
        request.method,
        request.url.path,
        default_client_key(request),
    )
