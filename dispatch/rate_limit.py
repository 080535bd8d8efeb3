# dispatch/rate_limit.py
from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from .errors import InvalidRateError, LimiterStoppedError
from .metrics import LIMITER_ACQUIRED_TOTAL, LIMITER_RATE, LIMITER_WAIT_SECONDS

DEFAULT_RATE_LIMIT = 80  # messages per second
MIN_RATE_LIMIT = 1
MAX_RATE_LIMIT = 1000


def _validate_rate(rate) -> int:
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        raise InvalidRateError(rate, MIN_RATE_LIMIT, MAX_RATE_LIMIT)
    if isinstance(rate, float) and not rate.is_integer():
        raise InvalidRateError(rate, MIN_RATE_LIMIT, MAX_RATE_LIMIT)
    if not MIN_RATE_LIMIT <= rate <= MAX_RATE_LIMIT:
        raise InvalidRateError(rate, MIN_RATE_LIMIT, MAX_RATE_LIMIT)
    return int(rate)


class RateLimiter:
    """
    Token-bucket admission gate for outbound WhatsApp API calls.

    Capacity and refill rate are both `messages_per_second`, so a full bucket
    allows one second worth of burst. Refill is computed lazily from a
    monotonic clock; there is no background timer to clean up.

    Waiters are admitted FIFO: the asyncio.Lock queues them in arrival order
    and only the lock holder sleeps on the bucket, until the instant its token
    is due (or earlier, if update_rate/reset/stop wakes it).

    The limiter belongs to one event loop. The non-async methods never await,
    so they are atomic with respect to the coroutines on that loop.
    """

    def __init__(self, messages_per_second: int = DEFAULT_RATE_LIMIT, *,
                 clock: Callable[[], float] = time.monotonic):
        rate = _validate_rate(messages_per_second)
        self._clock = clock
        self._max_tokens = rate
        self._refill_rate = float(rate)
        self._tokens = float(rate)
        self._last_refill = clock()
        self._running = True
        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        LIMITER_RATE.set(rate)

    @property
    def rate(self) -> int:
        return self._max_tokens

    @property
    def running(self) -> bool:
        return self._running

    # ---------- internals ----------
    def _refill(self) -> None:
        if not self._running:
            return
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._max_tokens, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    def _wake(self) -> None:
        self._wakeup.set()

    # ---------- public API ----------
    async def acquire(self) -> None:
        """
        Take one token, suspending until one is available.
        Raises LimiterStoppedError if the limiter is (or becomes) stopped.
        Cancellation while waiting consumes nothing.
        """
        if not self._running:
            raise LimiterStoppedError()

        started = time.monotonic()
        async with self._lock:
            while True:
                if not self._running:
                    raise LimiterStoppedError()
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    break
                delay = (1.0 - self._tokens) / self._refill_rate
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

        LIMITER_ACQUIRED_TOTAL.inc()
        LIMITER_WAIT_SECONDS.observe(time.monotonic() - started)

    def reset(self) -> None:
        """Refill the bucket to capacity (e.g. once a provider outage is over)."""
        if not self._running:
            return
        self._tokens = float(self._max_tokens)
        self._last_refill = self._clock()
        self._wake()

    def get_tokens_available(self) -> int:
        """Approximate snapshot for display; does not mutate the bucket."""
        tokens = self._tokens
        if self._running:
            elapsed = self._clock() - self._last_refill
            if elapsed > 0:
                tokens = min(self._max_tokens, tokens + elapsed * self._refill_rate)
        return math.floor(tokens)

    def update_rate(self, messages_per_second: int) -> None:
        rate = _validate_rate(messages_per_second)
        # settle credit earned at the old rate before switching
        self._refill()
        self._max_tokens = rate
        self._refill_rate = float(rate)
        self._tokens = min(self._tokens, float(rate))
        LIMITER_RATE.set(rate)
        logging.info("[limiter] Rate updated to %d msg/s", rate)
        self._wake()

    def stop(self) -> None:
        if not self._running:
            return
        self._refill()
        self._running = False
        self._wake()
        logging.info("[limiter] Stopped with %d tokens left", math.floor(self._tokens))


def create_rate_limiter(messages_per_second: int = DEFAULT_RATE_LIMIT) -> RateLimiter:
    return RateLimiter(messages_per_second)
