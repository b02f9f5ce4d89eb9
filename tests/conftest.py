"""Shared test fixtures for the Frontapp bridge test suite."""

from __future__ import annotations

import os
from collections.abc import Callable

import httpx
import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("FRONTAPP_API_TOKEN", "test-frontapp-token-123")
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-456")
    os.environ.setdefault("METRICS_ENABLED", "false")


class FakeSleep:
    """Async stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_frontapp_client(fake_sleep) -> Callable:
    """Factory: a FrontappClient backed by ``httpx.MockTransport``.

    Retries and rate-limit pacing use ``fake_sleep`` so nothing waits.
    """
    from frontapp_bridge.services.frontapp_client import FrontappClient
    from frontapp_bridge.services.rate_limit import RateLimitGovernor
    from frontapp_bridge.services.retry import RetryEngine, RetryPolicy

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> FrontappClient:
        kwargs.setdefault(
            "retry",
            RetryEngine(
                RetryPolicy(max_retries=3, initial_delay=1.0, max_delay=60.0),
                sleep=fake_sleep,
                rng=lambda: 0.5,
            ),
        )
        kwargs.setdefault("governor", RateLimitGovernor(sleep=fake_sleep))
        return FrontappClient(
            token="test-token",
            base_url="https://api.example.test",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return _make
