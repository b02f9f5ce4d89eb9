"""Tests for the async retry engine and error classification."""

from __future__ import annotations

import errno

import httpx
import pytest

from frontapp_bridge.errors import (
    FrontappAPIError,
    RateLimitError,
    RetriesExhaustedError,
    ServerError,
    TransientNetworkError,
)
from frontapp_bridge.services.retry import (
    RetryAttemptState,
    RetryEngine,
    RetryPolicy,
    is_retryable_error,
)

# ── Helpers ──────────────────────────────────────────────────────────


class _Flaky:
    """Coroutine factory that fails with ``errors`` in order, then returns ``value``."""

    def __init__(self, errors: list[BaseException], value: object = "ok") -> None:
        self._errors = list(errors)
        self._value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self._value


def _engine(fake_sleep, **policy) -> RetryEngine:
    policy.setdefault("max_retries", 3)
    policy.setdefault("initial_delay", 1.0)
    policy.setdefault("max_delay", 60.0)
    return RetryEngine(RetryPolicy(**policy), sleep=fake_sleep, rng=lambda: 0.5)


# ── Classification ───────────────────────────────────────────────────


class TestIsRetryableError:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert is_retryable_error(FrontappAPIError("boom", status_code=status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    def test_client_errors_are_terminal(self, status):
        assert is_retryable_error(FrontappAPIError("nope", status_code=status)) is False

    def test_network_errors_are_retryable(self):
        assert is_retryable_error(httpx.ConnectError("refused")) is True
        assert is_retryable_error(httpx.ReadTimeout("slow")) is True
        assert is_retryable_error(ConnectionResetError()) is True
        assert is_retryable_error(TimeoutError()) is True
        assert is_retryable_error(TransientNetworkError("reset")) is True

    def test_error_code_attribute(self):
        exc = RuntimeError("socket hang up")
        exc.code = "ECONNRESET"
        assert is_retryable_error(exc) is True

    def test_errno_attribute(self):
        assert is_retryable_error(OSError(errno.EHOSTUNREACH, "no route")) is True

    def test_status_from_response_attribute(self):
        request = httpx.Request("GET", "https://api.example.test/tags")
        response = httpx.Response(502, request=request)
        exc = httpx.HTTPStatusError("bad gateway", request=request, response=response)
        assert is_retryable_error(exc) is True

    def test_wrapped_network_cause(self):
        try:
            try:
                raise httpx.ConnectError("refused")
            except httpx.ConnectError as inner:
                raise FrontappAPIError("wrapped") from inner
        except FrontappAPIError as exc:
            assert is_retryable_error(exc) is True

    def test_plain_errors_are_terminal(self):
        assert is_retryable_error(ValueError("bad")) is False
        assert is_retryable_error(KeyError("id")) is False

    def test_exhausted_retries_are_terminal(self):
        exhausted = RetriesExhaustedError(ServerError("down", status_code=503), attempts=4)
        assert exhausted.status_code == 503
        assert is_retryable_error(exhausted) is False


# ── Delay computation ────────────────────────────────────────────────


class TestComputeDelay:
    def test_exponential_growth_without_jitter(self, fake_sleep):
        engine = _engine(fake_sleep)
        assert [engine.compute_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self, fake_sleep):
        engine = _engine(fake_sleep, max_delay=5.0)
        assert engine.compute_delay(10) == 5.0

    def test_jitter_stays_within_ten_percent(self):
        low = RetryEngine(RetryPolicy(initial_delay=4.0), rng=lambda: 0.0)
        high = RetryEngine(RetryPolicy(initial_delay=4.0), rng=lambda: 1.0)
        assert low.compute_delay(1) == pytest.approx(3.6)
        assert high.compute_delay(1) == pytest.approx(4.4)

    def test_fixed_delay_when_backoff_disabled(self, fake_sleep):
        engine = _engine(fake_sleep, initial_delay=2.0, use_exponential_backoff=False)
        assert engine.compute_delay(1) == 2.0
        assert engine.compute_delay(5) == 2.0

    def test_retry_after_hint_overrides_backoff(self, fake_sleep):
        engine = _engine(fake_sleep)
        assert engine.compute_delay(1, RateLimitError("slow down", retry_after=7)) == 7.0

    def test_retry_after_hint_is_capped(self, fake_sleep):
        engine = _engine(fake_sleep, max_delay=30.0)
        assert engine.compute_delay(1, RateLimitError("slow down", retry_after=120)) == 30.0


# ── execute_with_retry ───────────────────────────────────────────────


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_success_on_first_try_does_not_sleep(self, fake_sleep):
        op = _Flaky([])
        assert await _engine(fake_sleep).execute_with_retry(op) == "ok"
        assert op.calls == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, fake_sleep):
        op = _Flaky([ServerError("down", status_code=503), TransientNetworkError("reset")])
        assert await _engine(fake_sleep).execute_with_retry(op) == "ok"
        assert op.calls == 3
        assert fake_sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, fake_sleep):
        error = ServerError("down", status_code=503)
        op = _Flaky([error] * 10)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await _engine(fake_sleep).execute_with_retry(op, context={"operation": "GET /x"})

        assert op.calls == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.last_error is error
        assert exc_info.value.__cause__ is error
        assert fake_sleep.calls == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_terminal_error_is_raised_immediately(self, fake_sleep):
        error = FrontappAPIError("not found", status_code=404)
        op = _Flaky([error])

        with pytest.raises(FrontappAPIError) as exc_info:
            await _engine(fake_sleep).execute_with_retry(op)

        assert exc_info.value is error
        assert op.calls == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, fake_sleep):
        op = _Flaky([ServerError("down", status_code=500)])
        with pytest.raises(RetriesExhaustedError):
            await _engine(fake_sleep, max_retries=0).execute_with_retry(op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_retry_after(self, fake_sleep):
        op = _Flaky([RateLimitError("429", retry_after=12)])
        await _engine(fake_sleep).execute_with_retry(op)
        assert fake_sleep.calls == [12.0]

    @pytest.mark.asyncio
    async def test_on_retry_callback_sees_attempt_state(self, fake_sleep):
        seen: list[tuple[int, float, str]] = []

        def _on_retry(state: RetryAttemptState, exc: BaseException) -> None:
            seen.append((state.attempt, state.next_delay, type(exc).__name__))

        engine = RetryEngine(
            RetryPolicy(max_retries=3, initial_delay=1.0),
            sleep=fake_sleep, rng=lambda: 0.5, on_retry=_on_retry,
        )
        await engine.execute_with_retry(_Flaky([ServerError("a", status_code=502)] * 2))
        assert seen == [(1, 1.0, "ServerError"), (2, 2.0, "ServerError")]

    @pytest.mark.asyncio
    async def test_nested_engines_do_not_multiply_attempts(self, fake_sleep):
        inner = _engine(fake_sleep, max_retries=2)
        outer = _engine(fake_sleep, max_retries=3)
        op = _Flaky([ServerError("down", status_code=503)] * 20)

        with pytest.raises(RetriesExhaustedError):
            await outer.execute_with_retry(lambda: inner.execute_with_retry(op))

        assert op.calls == 3  # inner budget only
