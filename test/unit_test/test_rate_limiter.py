"""
Unit tests for client-side RPC rate limiting
"""

import threading
import unittest

from solana_volume.infra.rate_limiter import (
    PREMIUM_PROFILE,
    PUBLIC_PROFILE,
    RateLimiter,
    RateLimitProfile,
)
from solana_volume.errors import ConfigError, RateLimitError


class FakeClock:
    """Monotonic clock advanced only by sleep()"""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestProfiles(unittest.TestCase):

    def test_builtin_profiles(self):
        self.assertEqual((PUBLIC_PROFILE.min_interval, PUBLIC_PROFILE.max_concurrent), (0.3, 3))
        self.assertEqual((PREMIUM_PROFILE.min_interval, PREMIUM_PROFILE.max_concurrent), (0.1, 10))

    def test_for_profile(self):
        self.assertIs(RateLimiter.for_profile("premium").profile, PREMIUM_PROFILE)
        self.assertIs(RateLimiter.for_profile("PUBLIC").profile, PUBLIC_PROFILE)

    def test_unknown_profile(self):
        with self.assertRaises(ConfigError):
            RateLimiter.for_profile("unlimited")

    def test_invalid_profile_values(self):
        with self.assertRaises(ConfigError):
            RateLimitProfile("bad", min_interval=-1, max_concurrent=1)
        with self.assertRaises(ConfigError):
            RateLimitProfile("bad", min_interval=0.1, max_concurrent=0)


class TestSpacing(unittest.TestCase):
    """Minimum interval between call starts"""

    def setUp(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(PUBLIC_PROFILE, clock=self.clock, sleep=self.clock.sleep)

    def test_first_call_immediate(self):
        with self.limiter.slot():
            pass
        self.assertEqual(self.clock.sleeps, [])

    def test_back_to_back_calls_spaced(self):
        for _ in range(3):
            with self.limiter.slot():
                pass

        self.assertEqual(len(self.clock.sleeps), 2)
        for delay in self.clock.sleeps:
            self.assertAlmostEqual(delay, 0.3)

    def test_no_wait_after_idle_period(self):
        with self.limiter.slot():
            pass
        self.clock.now += 5.0
        with self.limiter.slot():
            pass

        self.assertEqual(self.clock.sleeps, [])

    def test_in_flight_tracking(self):
        self.assertEqual(self.limiter.in_flight, 0)
        with self.limiter.slot():
            self.assertEqual(self.limiter.in_flight, 1)
        self.assertEqual(self.limiter.in_flight, 0)

    def test_released_on_error(self):
        with self.assertRaises(ValueError):
            with self.limiter.slot():
                raise ValueError("call failed")
        self.assertEqual(self.limiter.in_flight, 0)


class TestConcurrency(unittest.TestCase):
    """Maximum calls in flight"""

    def test_timeout_when_saturated(self):
        profile = RateLimitProfile("tiny", min_interval=0.0, max_concurrent=2)
        limiter = RateLimiter(profile)
        limiter.acquire()
        limiter.acquire()

        with self.assertRaises(RateLimitError):
            limiter.acquire(timeout=0.05)

        limiter.release()
        limiter.acquire(timeout=0.05)
        self.assertEqual(limiter.in_flight, 2)

    def test_threads_never_exceed_limit(self):
        profile = RateLimitProfile("tiny", min_interval=0.0, max_concurrent=3)
        limiter = RateLimiter(profile)
        peak = []
        lock = threading.Lock()
        start = threading.Event()

        def worker():
            start.wait()
            for _ in range(20):
                with limiter.slot():
                    with lock:
                        peak.append(limiter.in_flight)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        start.set()
        for t in threads:
            t.join()

        self.assertEqual(len(peak), 160)
        self.assertLessEqual(max(peak), 3)


if __name__ == "__main__":
    unittest.main()
