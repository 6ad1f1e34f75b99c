"""Per-conversation admission control.

Fixed windows per conversation token: the first call (or the first call
after the window elapsed) opens a new window with a count of 1; calls
are admitted until the count reaches the cap.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from grounded_chat.config import settings

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    started_at: float


class RateLimiter:
    """In-memory limiter with one lock per conversation token.

    Different tokens never contend. The key map is pruned of expired
    windows once it grows past `max_keys`.
    """

    def __init__(
        self,
        max_messages: int | None = None,
        window_seconds: float | None = None,
        max_keys: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_messages = max_messages or settings.RATE_LIMIT_MAX_MESSAGES
        self.window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        self.max_keys = max_keys or settings.RATE_LIMIT_MAX_KEYS
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def admit(self, conversation_token: str) -> bool:
        """Count one call for the token; False once the cap is reached."""
        lock = self._locks.setdefault(conversation_token, asyncio.Lock())
        async with lock:
            now = self._clock()
            window = self._windows.get(conversation_token)

            if window is None or now - window.started_at > self.window_seconds:
                self._windows[conversation_token] = _Window(count=1, started_at=now)
                self._prune(now)
                return True

            if window.count >= self.max_messages:
                logger.warning(f"Rate limit exceeded for conversation {conversation_token[:12]}")
                return False

            window.count += 1
            return True

    def _prune(self, now: float) -> None:
        if len(self._windows) <= self.max_keys:
            return
        expired = [
            token
            for token, window in self._windows.items()
            if now - window.started_at > self.window_seconds
        ]
        for token in expired:
            self._windows.pop(token, None)
            lock = self._locks.get(token)
            if lock is not None and not lock.locked():
                self._locks.pop(token, None)
        logger.debug(f"Pruned {len(expired)} expired rate limit windows")


class RedisRateLimiter:
    """Shared-counter limiter for multi-process deployments.

    INCR and EXPIRE NX run in one MULTI/EXEC transaction, so the first
    call of a window sets its expiry and concurrent callers never race.
    """

    KEY_PREFIX = "grounded_chat:rate:"

    def __init__(
        self,
        redis_client=None,
        max_messages: int | None = None,
        window_seconds: int | None = None,
    ):
        if redis_client is None:
            import redis.asyncio as redis

            redis_client = redis.from_url(settings.REDIS_URL)
        self.redis = redis_client
        self.max_messages = max_messages or settings.RATE_LIMIT_MAX_MESSAGES
        self.window_seconds = int(window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS)

    async def admit(self, conversation_token: str) -> bool:
        key = f"{self.KEY_PREFIX}{conversation_token}"
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self.window_seconds, nx=True)
            count, _ = await pipe.execute()

        if int(count) > self.max_messages:
            logger.warning(f"Rate limit exceeded for conversation {conversation_token[:12]}")
            return False
        return True


def get_rate_limiter(backend: str | None = None) -> RateLimiter | RedisRateLimiter:
    """Build the limiter selected by RATE_LIMIT_BACKEND."""
    name = (backend or settings.RATE_LIMIT_BACKEND).lower()
    if name == "redis":
        return RedisRateLimiter()
    if name == "memory":
        return RateLimiter()
    raise ValueError(f"Unknown rate limit backend '{name}'. Available: memory, redis")
