"""Tests for per-conversation rate limiting."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from grounded_chat.chat.rate_limiter import RateLimiter, RedisRateLimiter, get_rate_limiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Tests for the in-memory limiter."""

    @pytest.mark.asyncio
    async def test_admits_up_to_cap(self):
        """The 100th call is admitted and the 101st is rejected."""
        limiter = RateLimiter(max_messages=100, window_seconds=3600, clock=FakeClock())
        results = [await limiter.admit("visitor-a") for _ in range(101)]
        assert all(results[:100])
        assert results[100] is False

    @pytest.mark.asyncio
    async def test_tokens_are_independent(self):
        limiter = RateLimiter(max_messages=2, window_seconds=60, clock=FakeClock())
        assert await limiter.admit("a")
        assert await limiter.admit("a")
        assert not await limiter.admit("a")
        assert await limiter.admit("b")

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self):
        clock = FakeClock()
        limiter = RateLimiter(max_messages=1, window_seconds=60, clock=clock)
        assert await limiter.admit("a")
        assert not await limiter.admit("a")

        clock.now += 60.5
        assert await limiter.admit("a")
        assert not await limiter.admit("a")

    @pytest.mark.asyncio
    async def test_window_boundary_is_inclusive(self):
        """A call exactly `window_seconds` after the start still counts in the old window."""
        clock = FakeClock()
        limiter = RateLimiter(max_messages=1, window_seconds=60, clock=clock)
        await limiter.admit("a")
        clock.now += 60
        assert not await limiter.admit("a")

    @pytest.mark.asyncio
    async def test_concurrent_calls_never_exceed_cap(self):
        limiter = RateLimiter(max_messages=10, window_seconds=60, clock=FakeClock())
        results = await asyncio.gather(*(limiter.admit("same") for _ in range(50)))
        assert sum(results) == 10

    @pytest.mark.asyncio
    async def test_prunes_expired_windows(self):
        clock = FakeClock()
        limiter = RateLimiter(max_messages=5, window_seconds=10, max_keys=3, clock=clock)
        for token in ["a", "b", "c"]:
            await limiter.admit(token)
        clock.now += 20
        await limiter.admit("d")
        await limiter.admit("e")
        assert "a" not in limiter._windows
        assert set(limiter._windows) == {"d", "e"}


class TestRedisRateLimiter:
    """Tests for the Redis-backed limiter with a mocked client."""

    def _client(self, count: int) -> MagicMock:
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[count, True])
        pipe.__aenter__ = AsyncMock(return_value=pipe)
        pipe.__aexit__ = AsyncMock(return_value=None)
        client = MagicMock()
        client.pipeline.return_value = pipe
        return client

    @pytest.mark.asyncio
    async def test_admits_while_under_cap(self):
        client = self._client(count=100)
        limiter = RedisRateLimiter(redis_client=client, max_messages=100, window_seconds=3600)
        assert await limiter.admit("visitor") is True

        pipe = client.pipeline.return_value
        pipe.incr.assert_called_once_with("grounded_chat:rate:visitor")
        pipe.expire.assert_called_once_with("grounded_chat:rate:visitor", 3600, nx=True)

    @pytest.mark.asyncio
    async def test_rejects_over_cap(self):
        limiter = RedisRateLimiter(
            redis_client=self._client(count=101), max_messages=100, window_seconds=3600
        )
        assert await limiter.admit("visitor") is False


def test_get_rate_limiter_memory():
    assert isinstance(get_rate_limiter("memory"), RateLimiter)


def test_get_rate_limiter_unknown_backend():
    with pytest.raises(ValueError, match="Unknown rate limit backend"):
        get_rate_limiter("memcached")
