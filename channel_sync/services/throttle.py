"""
계정별 호출 제한 (토큰 버킷 + 동시성 세마포어).

마켓은 과도한 호출을 스로틀/차단하므로 모든 어댑터 호출은 계정 단위 limiter 를 거친다.
"""
import asyncio
import logging
import time
import weakref
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from channel_sync.settings import settings

logger = logging.getLogger(__name__)


class TokenBucket:
    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        self.rate = float(rate)
        self.capacity = float(max(1, burst))
        self._tokens = self.capacity
        self._clock = clock
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self):
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def wait_time(self) -> float:
        self._refill()
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) / self.rate

    async def acquire(self):
        async with self._lock:
            while not self.try_acquire():
                await asyncio.sleep(self.wait_time())


class AccountThrottle:
    def __init__(self, rate: float, burst: int, max_concurrency: int):
        self.bucket = TokenBucket(rate, burst)
        self.max_concurrency = max_concurrency
        self.semaphore = asyncio.Semaphore(max_concurrency)

    @asynccontextmanager
    async def slot(self):
        async with self.semaphore:
            await self.bucket.acquire()
            yield


def _account_limits(account: Any) -> Dict[str, float]:
    overrides = dict(getattr(account, "settings", None) or {})
    return {
        "rate": float(overrides.get("rate_limit_per_second") or settings.account_rate_limit_per_second),
        "burst": int(overrides.get("rate_limit_burst") or settings.account_rate_limit_burst),
        "max_concurrency": int(overrides.get("max_concurrency") or settings.account_max_concurrency),
    }


class ThrottleRegistry:
    """
    계정 ID → AccountThrottle.
    asyncio 프리미티브는 이벤트 루프에 묶이므로 루프별로 분리해 보관한다.
    """

    def __init__(self):
        self._throttles: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, AccountThrottle]]" = (
            weakref.WeakKeyDictionary()
        )

    def get(self, account: Any) -> AccountThrottle:
        per_loop = self._throttles.setdefault(asyncio.get_running_loop(), {})
        key = str(getattr(account, "id", account))
        throttle = per_loop.get(key)
        if throttle is None:
            limits = _account_limits(account)
            throttle = AccountThrottle(limits["rate"], limits["burst"], limits["max_concurrency"])
            per_loop[key] = throttle
            logger.debug(f"[THROTTLE] Created limiter for account {key}: {limits}")
        return throttle

    def reset(self, account_id: Optional[str] = None):
        for per_loop in list(self._throttles.values()):
            if account_id is None:
                per_loop.clear()
            else:
                per_loop.pop(str(account_id), None)


# 싱글톤 인스턴스
throttles = ThrottleRegistry()
