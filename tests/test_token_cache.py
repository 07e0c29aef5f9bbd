"""Tests for the keyed access-token cache."""

import asyncio

import pytest

from leadsignal.services.dispatch.token_cache import TokenCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenCache:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        cache = TokenCache(refresh_margin=300, clock=FakeClock())
        calls = 0
        release = asyncio.Event()

        async def fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return "token-1", 3600

        waiters = [asyncio.create_task(cache.get_token("cust", fetch)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(*waiters) == ["token-1"] * 5
        assert calls == 1

    @pytest.mark.asyncio
    async def test_cached_token_is_reused(self):
        cache = TokenCache(refresh_margin=300, clock=FakeClock())
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 3600

        assert await cache.get_token("cust", fetch) == "token-1"
        assert await cache.get_token("cust", fetch) == "token-1"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_the_margin(self):
        clock = FakeClock()
        cache = TokenCache(refresh_margin=300, clock=clock)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 3600

        await cache.get_token("cust", fetch)
        clock.now += 3600 - 299
        assert cache.peek("cust") is None
        assert await cache.get_token("cust", fetch) == "token-2"

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        cache = TokenCache(clock=FakeClock())

        async def fetch_a():
            return "a", 3600

        async def fetch_b():
            return "b", 3600

        assert await cache.get_token("one", fetch_a) == "a"
        assert await cache.get_token("two", fetch_b) == "b"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_refresh(self):
        cache = TokenCache(clock=FakeClock())
        release = asyncio.Event()

        async def fetch():
            await release.wait()
            return "token", 3600

        first = asyncio.create_task(cache.get_token("cust", fetch))
        second = asyncio.create_task(cache.get_token("cust", fetch))
        await asyncio.sleep(0)
        first.cancel()
        release.set()

        assert await second == "token"
        with pytest.raises(asyncio.CancelledError):
            await first
        assert cache.peek("cust") == "token"

    @pytest.mark.asyncio
    async def test_failed_refresh_propagates_and_is_not_cached(self):
        cache = TokenCache(clock=FakeClock())

        async def failing():
            raise RuntimeError("oauth down")

        async def working():
            return "token", 3600

        with pytest.raises(RuntimeError):
            await cache.get_token("cust", failing)
        assert await cache.get_token("cust", working) == "token"

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self):
        cache = TokenCache(clock=FakeClock())
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 3600

        await cache.get_token("cust", fetch)
        cache.invalidate("cust")
        assert await cache.get_token("cust", fetch) == "token-2"

    @pytest.mark.asyncio
    async def test_short_lived_token_is_reused_until_half_its_lifetime(self):
        clock = FakeClock()
        cache = TokenCache(refresh_margin=300, clock=clock)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return f"token-{calls}", 200

        assert await cache.get_token("cust", fetch) == "token-1"
        clock.now += 99
        assert await cache.get_token("cust", fetch) == "token-1"
        assert calls == 1

        clock.now += 1
        assert cache.peek("cust") is None
        assert await cache.get_token("cust", fetch) == "token-2"
