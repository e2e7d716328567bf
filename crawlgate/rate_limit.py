import logging
import time
from pathlib import Path

import redis.exceptions
from redis.asyncio import Redis

logger = logging.getLogger("uvicorn.error")

LUA_SCRIPT = Path(__file__).parent / 'redis/token/bucket.lua'
LUA = LUA_SCRIPT.read_text()


class RateLimiter:
    """
    Redis-backed token bucket shared by every gateway instance.

    The Lua script refills and consumes in one atomic step, so concurrent
    instances never hand out the same token twice.
    """
    def __init__(self, redis: Redis):
        self.redis = redis
        self.sha: str | None = None

    async def load(self) -> None:
        """Register the bucket script with Redis and remember its SHA."""
        self.sha = await self.redis.script_load(LUA)

    async def _eval(self, *args):
        # 0 KEYS; the bucket key travels in ARGV
        return await self.redis.evalsha(self.sha, 0, *args)

    async def allow(self,
                    key: str,
                    capacity: int,
                    rate: float,
                    tokens: int = 1) -> tuple[bool, float]:
        """
        Try to take ``tokens`` from the bucket at ``key``.
        :return: (allowed, remaining_tokens)
        """
        if self.sha is None:
            raise RuntimeError("RateLimiter not initialized. Call load() first.")

        now_ms = int(time.time() * 1000)
        try:
            result = await self._eval(key, capacity, rate, now_ms, tokens)
        except redis.exceptions.NoScriptError:
            # script cache flushed (Redis restart or SCRIPT FLUSH)
            logger.warning("Rate limit script missing from Redis, reloading")
            await self.load()
            result = await self._eval(key, capacity, rate, now_ms, tokens)

        return bool(int(result[0])), float(result[1])
