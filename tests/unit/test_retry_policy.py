import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from tenacity.wait import wait_base

from channel_sync.services.exceptions import PermanentAdapterFailure, TransientAdapterFailure
from channel_sync.services.retry_policy import (
    RetryPolicy,
    classify_exception,
    classify_status,
    to_adapter_failure,
)
from channel_sync.types import AdapterErrorClass

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.mark.unit
class TestRetryPolicy:
    """백오프/재시도 한도 테스트"""

    def test_exponential_backoff_capped(self):
        policy = RetryPolicy(max_attempts=10, initial_delay=30, multiplier=2, max_delay=100, jitter=0)
        assert [policy.backoff_seconds(n) for n in (1, 2, 3, 4)] == [30, 60, 100, 100]

    def test_jitter_is_bounded(self):
        policy = RetryPolicy(initial_delay=10, multiplier=2, max_delay=1000, jitter=5)
        for attempt in range(1, 6):
            delay = policy.backoff_seconds(attempt)
            base = min(1000, 10 * 2 ** (attempt - 1))
            assert base <= delay <= base + 5

    def test_backoff_uses_tenacity_wait_strategy(self):
        policy = RetryPolicy(initial_delay=30, multiplier=2, max_delay=1800, jitter=0)

        assert isinstance(policy.wait, wait_base)
        # 큰 시도 번호도 상한에서 멈춤
        assert policy.backoff_seconds(5000) == 1800

    def test_transient_failure_schedules_retry(self):
        policy = RetryPolicy(max_attempts=3, initial_delay=30, multiplier=2, jitter=0)

        decision = policy.decide(True, 0, NOW)

        assert decision.retryable is True
        assert decision.retry_count == 1
        assert decision.next_retry_at == NOW + timedelta(seconds=30)

    def test_permanent_failure_never_retries(self):
        decision = RetryPolicy(jitter=0).decide(False, 0, NOW)
        assert decision.retryable is False
        assert decision.next_retry_at is None

    def test_retries_are_bounded(self):
        """max_attempts 이후에는 retryable=False"""
        policy = RetryPolicy(max_attempts=3, jitter=0)
        count = 0
        decisions = []
        for _ in range(5):
            decision = policy.decide(True, count, NOW)
            decisions.append(decision.retryable)
            count = decision.retry_count

        assert decisions == [True, True, True, False, False]
        assert count == 3


@pytest.mark.unit
class TestClassification:
    """에러 분류 테스트"""

    @pytest.mark.parametrize("status_code, expected, transient", [
        (429, AdapterErrorClass.RATE_LIMITED, True),
        (500, AdapterErrorClass.UNKNOWN, True),
        (503, AdapterErrorClass.UNKNOWN, True),
        (504, AdapterErrorClass.TIMEOUT, True),
        (400, AdapterErrorClass.VALIDATION_REJECTED, False),
        (401, AdapterErrorClass.AUTH_EXPIRED, False),
        (404, AdapterErrorClass.NOT_FOUND, False),
    ])
    def test_status_codes(self, status_code, expected, transient):
        error_class = classify_status(status_code)
        assert error_class == expected
        assert error_class.is_transient is transient

    def test_exceptions(self):
        request = httpx.Request("GET", "https://channel.example.com/products/1")
        assert classify_exception(asyncio.TimeoutError()) == (AdapterErrorClass.TIMEOUT, True)
        assert classify_exception(httpx.ConnectError("refused", request=request)) == (AdapterErrorClass.NETWORK, True)
        assert classify_exception(PermanentAdapterFailure("nope")) == (AdapterErrorClass.VALIDATION_REJECTED, False)
        # 분류할 수 없는 오류는 성공으로 보지 않음
        assert classify_exception(RuntimeError("boom")) == (AdapterErrorClass.UNKNOWN, True)

    def test_http_status_error(self):
        request = httpx.Request("PUT", "https://channel.example.com/products/1")
        response = httpx.Response(403, request=request)
        error = httpx.HTTPStatusError("forbidden", request=request, response=response)

        failure = to_adapter_failure(error)

        assert isinstance(failure, PermanentAdapterFailure)
        assert failure.error_class == AdapterErrorClass.AUTH_EXPIRED
        assert failure.status_code == 403

    def test_transient_wrapping(self):
        failure = to_adapter_failure(ConnectionResetError("reset"))
        assert isinstance(failure, TransientAdapterFailure)
        assert failure.retryable is True
