"""Holder for the optional shared Redis connection.

Created once per application, connected in the lifespan handler and closed
at shutdown. Components that need Redis receive the holder and check
``ready`` before every use; an absent or unreachable server simply reads
as not ready.
"""

import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisConnection:
    """Owns a ``redis.asyncio`` client and its readiness flag.

    Args:
        url: Redis connection URL, or None to run without Redis.
        client: Pre-built client (tests inject fakeredis here).
    """

    def __init__(self, url: Optional[str] = None, client: Optional[Any] = None) -> None:
        self._url = url
        self._client = client
        self._ready = client is not None

    @property
    def ready(self) -> bool:
        return self._ready and self._client is not None

    @property
    def client(self) -> Optional[Any]:
        return self._client if self.ready else None

    async def connect(self) -> bool:
        """Create the client and ping it. Returns the resulting readiness."""
        if self._client is None:
            if not self._url:
                logger.info("REDIS_URL not set - using in-process rate limiting")
                return False
            self._client = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            logger.warning("Redis not available at %s - falling back to in-process state: %s", self._url, e)
            self._ready = False
            return False

        self._ready = True
        logger.info("Redis connected at %s", self._url or "<injected client>")
        return True

    async def ping(self) -> bool:
        """Health probe. A successful ping re-arms readiness; a failed one clears it."""
        if self._client is None:
            return False
        try:
            alive = bool(await self._client.ping())
        except (RedisError, OSError):
            alive = False
        if alive and not self._ready:
            logger.info("Redis reachable again at %s", self._url or "<injected client>")
        self._ready = alive
        return alive

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        self._ready = False
