"""
재시도/백오프 정책 및 에러 분류.

일시적(transient) 실패만 재시도한다:
- 연결/타임아웃/네트워크 오류, 5xx, 429 → transient
- 그 외 4xx, 검증 거절, 인증 만료 → permanent
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

import httpx
from tenacity import RetryCallState, wait_exponential, wait_random

from channel_sync.services.exceptions import (
    AdapterFailure,
    PermanentAdapterFailure,
    SyncError,
    TransientAdapterFailure,
)
from channel_sync.settings import settings
from channel_sync.types import AdapterErrorClass


def classify_status(status_code: int) -> AdapterErrorClass:
    if status_code == 429:
        return AdapterErrorClass.RATE_LIMITED
    if status_code in (401, 403):
        return AdapterErrorClass.AUTH_EXPIRED
    if status_code in (404, 410):
        return AdapterErrorClass.NOT_FOUND
    if status_code in (408, 504):
        return AdapterErrorClass.TIMEOUT
    if 400 <= status_code < 500:
        return AdapterErrorClass.VALIDATION_REJECTED
    return AdapterErrorClass.UNKNOWN


def classify_exception(exc: BaseException) -> Tuple[AdapterErrorClass, bool]:
    """예외 → (에러 분류, 재시도 가능 여부)"""
    if isinstance(exc, AdapterFailure):
        return exc.error_class, exc.retryable
    if isinstance(exc, SyncError):
        return AdapterErrorClass.UNKNOWN, exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return AdapterErrorClass.TIMEOUT, True
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
        return AdapterErrorClass.NETWORK, True
    if isinstance(exc, httpx.HTTPStatusError):
        error_class = classify_status(exc.response.status_code)
        return error_class, error_class.is_transient
    if isinstance(exc, (ConnectionError, OSError)):
        return AdapterErrorClass.NETWORK, True
    # 알 수 없는 오류는 성공으로 간주하지 않고 재시도 대상으로 둔다
    return AdapterErrorClass.UNKNOWN, True


def to_adapter_failure(exc: BaseException) -> AdapterFailure:
    if isinstance(exc, AdapterFailure):
        return exc
    error_class, transient = classify_exception(exc)
    message = str(exc) or exc.__class__.__name__
    status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
    if transient:
        return TransientAdapterFailure(message, error_class=error_class, status_code=status_code)
    return PermanentAdapterFailure(message, error_class=error_class, status_code=status_code)


@dataclass
class RetryDecision:
    retryable: bool
    retry_count: int
    next_retry_at: Optional[datetime] = None
    delay_seconds: Optional[float] = None


class RetryPolicy:
    """
    delay = wait_exponential(multiplier=initial, exp_base=multiplier, max=max_delay) + wait_random(0, jitter)
    retry_count 가 max_attempts 에 도달하면 더 이상 재시도하지 않는다.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        multiplier: Optional[float] = None,
        max_delay: Optional[float] = None,
        jitter: Optional[float] = None,
    ):
        self.max_attempts = settings.sync_max_retry_attempts if max_attempts is None else max_attempts
        self.initial_delay = settings.sync_retry_initial_delay_seconds if initial_delay is None else initial_delay
        self.multiplier = settings.sync_retry_multiplier if multiplier is None else multiplier
        self.max_delay = settings.sync_retry_max_delay_seconds if max_delay is None else max_delay
        self.jitter = settings.sync_retry_jitter_seconds if jitter is None else jitter
        self.wait = wait_exponential(
            multiplier=self.initial_delay, exp_base=self.multiplier, min=0, max=self.max_delay
        )
        if self.jitter > 0:
            self.wait = self.wait + wait_random(0, self.jitter)

    def backoff_seconds(self, attempt: int) -> float:
        # next_retry_at 으로 저장하므로 tenacity 대기 전략을 시도 번호로 직접 평가
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = max(1, attempt)
        return self.wait(state)

    def decide(self, transient: bool, previous_retry_count: int, now: datetime) -> RetryDecision:
        """실패 1회 반영 후 재시도 일정 결정"""
        if not transient:
            return RetryDecision(retryable=False, retry_count=previous_retry_count)
        attempt = previous_retry_count + 1
        if attempt > self.max_attempts:
            return RetryDecision(retryable=False, retry_count=previous_retry_count)
        delay = self.backoff_seconds(attempt)
        return RetryDecision(
            retryable=True,
            retry_count=attempt,
            next_retry_at=now + timedelta(seconds=delay),
            delay_seconds=delay,
        )
