import asyncio
from types import SimpleNamespace

import pytest

from channel_sync.services.throttle import ThrottleRegistry, TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestTokenBucket:
    """토큰 버킷 테스트"""

    def test_burst_then_refill(self):
        clock = FakeClock()
        bucket = TokenBucket(rate=2, burst=3, clock=clock)

        assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]
        assert bucket.wait_time() == pytest.approx(0.5)

        clock.now = 0.5
        assert bucket.try_acquire() is True
        assert bucket.try_acquire() is False

    def test_capacity_is_capped(self):
        clock = FakeClock()
        bucket = TokenBucket(rate=10, burst=2, clock=clock)
        clock.now = 100
        assert [bucket.try_acquire() for _ in range(3)] == [True, True, False]


@pytest.mark.unit
class TestThrottleRegistry:
    """계정 단위 limiter 테스트"""

    async def test_same_account_shares_limiter(self):
        registry = ThrottleRegistry()
        account = SimpleNamespace(id="acc-1", settings={"rate_limit_per_second": 5, "max_concurrency": 2})
        other = SimpleNamespace(id="acc-2", settings={})

        first = registry.get(account)
        assert registry.get(account) is first
        assert registry.get(other) is not first
        assert first.max_concurrency == 2
        assert first.bucket.rate == 5

    async def test_concurrency_is_limited(self):
        registry = ThrottleRegistry()
        account = SimpleNamespace(id="acc-1", settings={"rate_limit_per_second": 1000, "rate_limit_burst": 100, "max_concurrency": 2})
        throttle = registry.get(account)
        running = 0
        peak = 0

        async def call():
            nonlocal running, peak
            async with throttle.slot():
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1

        await asyncio.gather(*(call() for _ in range(6)))

        assert peak == 2

    async def test_reset(self):
        registry = ThrottleRegistry()
        account = SimpleNamespace(id="acc-1", settings={})
        first = registry.get(account)
        registry.reset("acc-1")
        assert registry.get(account) is not first
