"""Attempt limiting for short-code credentials.

Short codes have a much smaller keyspace than full tokens, so guesses are
throttled per client with a Redis sorted-set sliding window shared by every
worker process. Full tokens are never throttled.

If Redis cannot be reached, short codes are refused (full tokens keep
working) rather than letting guesses through unthrottled.
"""

from __future__ import annotations

import logging
import time
from typing import Callable
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from projectgate.config import get_config
from projectgate.portal.lookup import looks_like_short_code

logger = logging.getLogger(__name__)

KEY_PREFIX = "projectgate:short_code_attempts"


class AttemptLimiter:
    """Sliding-window attempt counter keyed by client identifier.

    Every attempt is recorded, including refused ones, so a client that
    keeps guessing stays locked out until it pauses for a full window.

    Example:
        >>> limiter = AttemptLimiter(redis.from_url(url, decode_responses=True), max_attempts=3)
        >>> await limiter.allow("10.0.0.1")
        True
    """

    def __init__(
        self,
        client: redis.Redis,
        max_attempts: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
        key_prefix: str = KEY_PREFIX,
    ):
        self.client = client
        self.max_attempts = max_attempts
        self.window = window_seconds
        self._clock = clock
        self.key_prefix = key_prefix

    def _key(self, client_id: str | None) -> str:
        return f"{self.key_prefix}:{client_id or 'unknown'}"

    async def allow(self, client_id: str | None) -> bool:
        """Record an attempt and report whether it is within the limit."""
        key = self._key(client_id)
        now = self._clock()
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now - self.window)
                pipe.zadd(key, {f"{now}:{uuid4().hex}": now})
                pipe.zcard(key)
                pipe.expire(key, int(self.window) + 1)
                results = await pipe.execute()
        except RedisError as e:
            logger.error("Short-code limiter unavailable, refusing attempt from %s: %s", key, e)
            return False

        attempts = results[2]
        if attempts > self.max_attempts:
            logger.warning(
                "Short-code attempts exceeded for %s: %d/%d in %.0fs",
                client_id or "unknown",
                attempts,
                self.max_attempts,
                self.window,
            )
            return False
        return True

    async def reset(self, client_id: str | None = None) -> None:
        if client_id is not None:
            await self.client.delete(self._key(client_id))
            return
        async for key in self.client.scan_iter(match=f"{self.key_prefix}:*"):
            await self.client.delete(key)


_limiter: AttemptLimiter | None = None


def get_short_code_limiter() -> AttemptLimiter:
    global _limiter
    if _limiter is None:
        config = get_config()
        _limiter = AttemptLimiter(
            redis.from_url(config.redis_url, decode_responses=True),
            max_attempts=config.portal.short_code_max_attempts,
            window_seconds=config.portal.short_code_window_seconds,
        )
    return _limiter


async def admit_credential(
    credential: str | None,
    client_id: str | None,
    limiter: AttemptLimiter | None = None,
) -> bool:
    """Count a short-code attempt against ``client_id``; full tokens always pass."""
    if not credential or not credential.strip():
        return True
    if not looks_like_short_code(credential.strip(), get_config().portal.short_code_length):
        return True
    limiter = limiter or get_short_code_limiter()
    return await limiter.allow(client_id)
