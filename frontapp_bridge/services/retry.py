"""Async retry-with-backoff executor.

One engine wraps every fallible coroutine in the package: webhook handler
processing and each outbound Frontapp request.  A fresh
:class:`RetryAttemptState` is created per call, so a single engine can be
shared freely between concurrent callers.

Classification
──────────────
• **Retryable**: network-level failures (connection reset / refused,
  timeouts, DNS failure, unreachable host, socket hang-up) and HTTP
  429 / 500 / 502 / 503 / 504.
• **Terminal**: everything else.  Terminal errors propagate on the first
  occurrence without consuming any retry budget.

Delay for retry *n* (1-based) is ``initial_delay * 2 ** (n - 1)`` with ±10 %
uniform jitter, capped at ``max_delay``.  A ``retry_after`` hint on the
error (set for 429 responses) replaces the computed delay for that retry.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import random
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from frontapp_bridge.config import (
    RETRY_INITIAL_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
    RETRY_MAX_RETRIES,
)
from frontapp_bridge.errors import RetriesExhaustedError, TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Error codes as they appear on ``exc.code`` / ``errno.errorcode``.
RETRYABLE_ERROR_CODES = frozenset({
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "ENOTFOUND",
    "ENETUNREACH",
    "EHOSTUNREACH",
    "EAI_AGAIN",
    "EPIPE",
})

_RETRYABLE_ERRNOS = frozenset({
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.EPIPE,
})

_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Tuning knobs for :class:`RetryEngine`.  Delays are in seconds."""

    max_retries: int = RETRY_MAX_RETRIES
    initial_delay: float = RETRY_INITIAL_DELAY_SECONDS
    max_delay: float = RETRY_MAX_DELAY_SECONDS
    use_exponential_backoff: bool = True
    jitter: float = 0.1


@dataclass
class RetryAttemptState:
    """Bookkeeping for a single ``execute_with_retry`` call."""

    max_retries: int
    attempt: int = 0
    next_delay: float = 0.0

    @property
    def retries(self) -> int:
        """Number of re-attempts made so far (first try excluded)."""
        return max(self.attempt - 1, 0)


def is_retryable_error(exc: BaseException) -> bool:
    """Return ``True`` if *exc* looks transient and is worth re-attempting."""
    # An inner engine already spent its budget on this failure.
    if isinstance(exc, RetriesExhaustedError):
        return False
    if isinstance(exc, (TransientNetworkError, *_NETWORK_EXCEPTIONS)):
        return True

    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
        return True

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return True

    exc_errno = getattr(exc, "errno", None)
    if isinstance(exc_errno, int) and exc_errno in _RETRYABLE_ERRNOS:
        return True

    # Wrapped errors: a FrontappAPIError raised ``from`` a transport error.
    cause = exc.__cause__
    if cause is not None and cause is not exc:
        return isinstance(cause, _NETWORK_EXCEPTIONS)
    return False


class RetryEngine:
    """Executes a zero-argument coroutine function with retries."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        on_retry: Callable[[RetryAttemptState, BaseException], None] | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self._on_retry = on_retry

    def compute_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Seconds to wait before retry number *attempt* (1-based)."""
        policy = self.policy

        hint = getattr(error, "retry_after", None)
        if isinstance(hint, (int, float)) and hint >= 0:
            return min(float(hint), policy.max_delay)

        if not policy.use_exponential_backoff:
            return min(policy.initial_delay, policy.max_delay)

        delay = policy.initial_delay * (2 ** (attempt - 1))
        jitter = delay * policy.jitter * (self._rng() * 2 - 1)
        return max(0.0, min(delay + jitter, policy.max_delay))

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run *operation*, retrying retryable failures per the policy.

        Raises the original error for terminal failures, or
        :class:`RetriesExhaustedError` (chained from the last error) once
        ``max_retries`` re-attempts have all failed.
        """
        ctx = context or {}
        state = RetryAttemptState(max_retries=self.policy.max_retries)

        while True:
            state.attempt += 1
            if state.attempt > 1:
                logger.info(
                    "Retrying %s (attempt %d/%d) %s",
                    ctx.get("operation", "operation"),
                    state.retries, state.max_retries, ctx,
                )
            try:
                return await operation()
            except Exception as exc:
                if not is_retryable_error(exc):
                    if state.attempt > 1:
                        logger.error(
                            "Non-retryable error after %d attempts: %s %s",
                            state.attempt, exc, ctx,
                        )
                    raise

                if state.retries >= state.max_retries:
                    logger.error(
                        "Giving up after %d attempts (%d retries): %s %s",
                        state.attempt, state.retries, exc, ctx,
                    )
                    raise RetriesExhaustedError(exc, state.attempt) from exc

                state.next_delay = self.compute_delay(state.attempt, exc)
                logger.warning(
                    "Attempt %d/%d failed (%s: %s). Retrying in %.2fs… %s",
                    state.attempt, state.max_retries + 1,
                    type(exc).__name__, exc, state.next_delay, ctx,
                )
                if self._on_retry is not None:
                    self._on_retry(state, exc)
                await self._sleep(state.next_delay)
