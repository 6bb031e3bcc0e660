"""
Token Bucket Rate Limiter

A thread-safe token bucket guarding outbound calls to rate-limited public
APIs (the live geolocation service allows 45 requests per minute).

Version: 1.0.0
"""

import time
import threading
import logging
from typing import Callable, Optional

security_logger = logging.getLogger('netscout.security')

# ip-api.com free tier: 45 requests per minute
IP_API_REQUESTS_PER_MINUTE = 45


class TokenBucket:
    """
    Thread-safe token bucket rate limiter.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens the bucket can hold
    """

    def __init__(
        self,
        rate: float = IP_API_REQUESTS_PER_MINUTE / 60.0,
        capacity: float = IP_API_REQUESTS_PER_MINUTE,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize token bucket.

        Args:
            rate: Tokens added per second
            capacity: Maximum tokens the bucket can hold
            clock: Monotonic time source
        """
        self._rate = max(0.0, rate)
        self._capacity = max(0.0, capacity)
        self._tokens = self._capacity
        self._clock = clock
        self._last_update = clock()
        self._lock = threading.Lock()

    @classmethod
    def per_minute(cls, requests: int) -> "TokenBucket":
        """Bucket allowing ``requests`` calls per minute with a full burst."""
        return cls(rate=requests / 60.0, capacity=requests)

    @property
    def rate(self) -> float:
        """Get the token refill rate."""
        return self._rate

    @property
    def capacity(self) -> float:
        """Get the bucket capacity."""
        return self._capacity

    def _refill_locked(self) -> None:
        """Add tokens for elapsed time. Caller holds the lock."""
        now = self._clock()
        elapsed = now - self._last_update
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._last_update = now

    def consume(self, tokens: float = 1) -> bool:
        """
        Take tokens without waiting.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed, False if the bucket is short
        """
        with self._lock:
            self._refill_locked()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def acquire(self, tokens: float = 1, timeout: Optional[float] = None) -> bool:
        """
        Take tokens, waiting for a refill if needed.

        Args:
            tokens: Number of tokens to consume
            timeout: Longest wait in seconds (None waits as long as required)

        Returns:
            True once consumed, False if the wait would exceed ``timeout``
        """
        with self._lock:
            self._refill_locked()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            if self._rate <= 0:
                return False
            wait = (tokens - self._tokens) / self._rate
            if timeout is not None and wait > timeout:
                security_logger.debug(f"Rate limit: {wait:.2f}s wait exceeds {timeout}s")
                return False
            # Reserve now so concurrent waiters queue behind this one
            self._tokens -= tokens

        time.sleep(wait)
        return True

    def get_tokens(self) -> float:
        """Get current number of tokens (thread-safe)."""
        with self._lock:
            self._refill_locked()
            return self._tokens

    def reset(self) -> None:
        """Reset the bucket to full capacity (thread-safe)."""
        with self._lock:
            self._tokens = self._capacity
            self._last_update = self._clock()

    def set_rate(self, rate: float) -> None:
        """
        Set a new rate (thread-safe).

        Args:
            rate: New tokens per second rate
        """
        with self._lock:
            self._refill_locked()
            self._rate = max(0.0, rate)


__all__ = ['TokenBucket', 'IP_API_REQUESTS_PER_MINUTE']
