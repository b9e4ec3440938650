"""
Sliding-window request limiter backed by a Redis sorted set per client.

Each accepted request is a member scored by its timestamp; members older
than the window are trimmed before counting. Redis being unreachable never
blocks the API: the limiter fails open.
"""
import time
import uuid

import redis.asyncio as redis

from app.config import settings
from app.logging_config import get_logger

logger = get_logger(component="rate_limiter")


class RateLimiter:

    def __init__(self, redis_url: str | None = None, limit: int | None = None, window: int | None = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.limit = limit or settings.RATE_LIMIT_REQUESTS
        self.window = window or settings.RATE_LIMIT_WINDOW_SECONDS
        self._redis: redis.Redis | None = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, socket_connect_timeout=1)
        return self._redis

    async def is_allowed(self, client_id: str) -> tuple[bool, int]:
        """Record one request for `client_id`. Returns (allowed, retry_after_seconds)."""
        key = f"ratelimit:notes:{client_id}"
        now = time.time()

        try:
            r = self._client()
            async with r.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now - self.window)
                pipe.zcard(key)
                pipe.zrange(key, 0, 0, withscores=True)
                _, count, oldest = await pipe.execute()

            if count >= self.limit:
                retry_after = int(self.window - (now - oldest[0][1])) if oldest else self.window
                return False, max(retry_after, 1)

            async with r.pipeline(transaction=True) as pipe:
                pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
                pipe.expire(key, self.window)
                await pipe.execute()
            return True, 0

        except redis.RedisError as e:
            logger.warning("rate_limiter_unavailable", error=str(e))
            return True, 0

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


rate_limiter = RateLimiter()
