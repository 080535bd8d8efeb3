# dispatch/errors.py
from __future__ import annotations


class RateLimiterError(Exception):
    """Base class for rate limiter lifecycle/validation errors."""


class InvalidRateError(RateLimiterError, ValueError):
    def __init__(self, rate, minimum: int, maximum: int):
        self.rate = rate
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"Rate limit must be between {minimum} and {maximum} (got {rate!r})")


class LimiterStoppedError(RateLimiterError):
    def __init__(self):
        super().__init__("Rate limiter has been stopped")
