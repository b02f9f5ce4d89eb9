"""Advisory pacing for outbound Frontapp requests.

Frontapp reports the remaining request budget on every response
(``x-ratelimit-remaining``) together with the epoch second at which the
budget resets (``x-ratelimit-reset``).  Once fewer than
:data:`LOW_WATER_MARK` requests remain, the governor spreads the time left
until the reset evenly over the remaining requests and sleeps that long
before each subsequent request.

This lowers the chance of a 429 but does not guarantee it: concurrent
callers read the same advisory delay and the last response to arrive wins.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

logger = logging.getLogger(__name__)

LOW_WATER_MARK = 10

HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RESET = "x-ratelimit-reset"
HEADER_RETRY_AFTER = "retry-after"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # httpx.Headers is case-insensitive already; plain dicts in tests are not.
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value


def parse_retry_after(headers: Mapping[str, str], now: float | None = None) -> float | None:
    """Return the ``Retry-After`` header in seconds, or ``None``.

    Accepts both the delta-seconds and the HTTP-date forms.
    """
    raw = _header(headers, HEADER_RETRY_AFTER)
    if not raw:
        return None
    raw = raw.strip()
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        logger.debug("Unparseable Retry-After header: %r", raw)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = now if now is not None else time.time()
    return max(0.0, when.timestamp() - current)


class RateLimitGovernor:
    """Tracks the advisory delay derived from Frontapp's rate-limit headers."""

    def __init__(
        self,
        *,
        low_water_mark: int = LOW_WATER_MARK,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._low_water_mark = low_water_mark
        self._clock = clock
        self._sleep = sleep
        self.delay: float = 0.0      # seconds to wait before the next request
        self.reset_at: float = 0.0   # epoch seconds when the budget resets

    async def wait_for_slot(self) -> float:
        """Sleep for the current advisory delay, if any.  Returns seconds slept."""
        if self.delay <= 0:
            return 0.0

        if self._clock() >= self.reset_at:
            logger.debug("Rate limit window has reset; clearing delay")
            self.delay = 0.0
            return 0.0

        delay = self.delay
        logger.info("Applying rate limit delay before request (%.3fs)", delay)
        await self._sleep(delay)
        return delay

    def update(self, headers: Mapping[str, str]) -> None:
        """Recompute the delay from a response's rate-limit headers."""
        remaining_raw = _header(headers, HEADER_REMAINING)
        reset_raw = _header(headers, HEADER_RESET)
        if not remaining_raw or not reset_raw:
            return

        try:
            remaining = int(remaining_raw)
            reset_at = float(reset_raw)
        except ValueError:
            logger.debug(
                "Ignoring malformed rate-limit headers: remaining=%r reset=%r",
                remaining_raw, reset_raw,
            )
            return

        if remaining >= self._low_water_mark:
            return

        now_ms = self._clock() * 1000
        until_reset_ms = max(0.0, reset_at * 1000 - now_ms)
        self.delay = math.ceil(until_reset_ms / (remaining + 1)) / 1000
        self.reset_at = reset_at

        logger.info(
            "Rate limit low: %d remaining, resets at %s, pacing requests %.3fs apart",
            remaining,
            datetime.fromtimestamp(reset_at, UTC).isoformat(),
            self.delay,
        )

    def snapshot(self) -> dict[str, float]:
        """Current state, for health output and tests."""
        return {"delay_seconds": self.delay, "reset_at": self.reset_at}
