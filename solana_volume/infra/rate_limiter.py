"""
Client-side RPC rate limiting

A RateLimiter enforces two limits around every RPC call:
- a minimum interval between call starts
- a maximum number of calls in flight

Limiters are plain objects owned by an RpcClient, so several profiles can
coexist in one process.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from ..errors import ConfigError, RateLimitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitProfile:
    """Limits for one class of RPC endpoint"""
    name: str
    min_interval: float  # seconds between call starts
    max_concurrent: int

    def __post_init__(self):
        if self.min_interval < 0:
            raise ConfigError.invalid("min_interval", "must not be negative")
        if self.max_concurrent < 1:
            raise ConfigError.invalid("max_concurrent", "must be at least 1")


PUBLIC_PROFILE = RateLimitProfile("public", min_interval=0.3, max_concurrent=3)
PREMIUM_PROFILE = RateLimitProfile("premium", min_interval=0.1, max_concurrent=10)

PROFILES: Dict[str, RateLimitProfile] = {
    PUBLIC_PROFILE.name: PUBLIC_PROFILE,
    PREMIUM_PROFILE.name: PREMIUM_PROFILE,
}


class RateLimiter:
    """
    Thread-safe call gate

    Usage:
        limiter = RateLimiter.for_profile("premium")

        with limiter.slot():
            response = client.post(...)
    """

    def __init__(
        self,
        profile: RateLimitProfile = PUBLIC_PROFILE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._profile = profile
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._semaphore = threading.BoundedSemaphore(profile.max_concurrent)
        self._next_start: Optional[float] = None
        self._in_flight = 0

    @classmethod
    def for_profile(cls, name: str, **kwargs) -> "RateLimiter":
        """Create limiter from a profile name ("public" or "premium")"""
        profile = PROFILES.get(name.lower())
        if profile is None:
            raise ConfigError.invalid(
                "rate_profile", f"unknown profile {name!r}, expected one of {sorted(PROFILES)}"
            )
        return cls(profile, **kwargs)

    @property
    def profile(self) -> RateLimitProfile:
        return self._profile

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def _reserve_start(self) -> float:
        """Reserve the next start time and return how long to wait for it"""
        with self._lock:
            now = self._clock()
            if self._next_start is None or self._next_start <= now:
                start = now
            else:
                start = self._next_start
            self._next_start = start + self._profile.min_interval
            return start - now

    def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Block until a call may start

        Args:
            timeout: Max seconds to wait for a free concurrency slot

        Raises:
            RateLimitError: If no slot became free within timeout
        """
        acquired = self._semaphore.acquire(timeout=timeout) if timeout is not None else self._semaphore.acquire()
        if not acquired:
            raise RateLimitError(
                f"No free RPC slot within {timeout}s "
                f"({self._profile.max_concurrent} calls in flight)"
            )
        with self._lock:
            self._in_flight += 1

        wait = self._reserve_start()
        if wait > 0:
            logger.debug(f"Rate limiter ({self._profile.name}) waiting {wait:.3f}s")
            self._sleep(wait)

    def release(self) -> None:
        with self._lock:
            self._in_flight -= 1
        self._semaphore.release()

    @contextmanager
    def slot(self, timeout: Optional[float] = None) -> Iterator[None]:
        self.acquire(timeout)
        try:
            yield
        finally:
            self.release()
