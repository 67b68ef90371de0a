import unittest
from unittest.mock import MagicMock

from custodia.core.rate_limit import SWEEP_EVERY_CALLS, SlidingWindowRateLimiter, client_ip
from custodia.core.session_store import (
    EXPECTED_IDENTITY,
    LOGIN_PENDING_OTP,
    SECURITY_CONTEXT,
    SWEEP_EVERY_WRITES,
    SessionBindingStore,
)

from helpers import FakeClock


class TestSessionBindingStore(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(1000.0)
        self.store = SessionBindingStore(default_ttl_seconds=60, clock=self.clock)

    def test_put_and_get(self):
        self.store.put("s1", EXPECTED_IDENTITY, "ex-1", {"id": "1001"})
        self.assertEqual(self.store.get("s1", EXPECTED_IDENTITY, "ex-1"), {"id": "1001"})
        # reading does not consume
        self.assertEqual(self.store.get("s1", EXPECTED_IDENTITY, "ex-1"), {"id": "1001"})

    def test_entries_are_isolated_by_session_and_namespace(self):
        self.store.put("s1", EXPECTED_IDENTITY, "ex-1", "a")
        self.assertIsNone(self.store.get("s2", EXPECTED_IDENTITY, "ex-1"))
        self.assertIsNone(self.store.get("s1", LOGIN_PENDING_OTP, "ex-1"))

    def test_entries_expire_lazily(self):
        self.store.put("s1", EXPECTED_IDENTITY, "ex-1", "a")
        self.store.put("s1", EXPECTED_IDENTITY, "ex-2", "b", ttl_seconds=600)
        self.clock.advance(59)
        self.assertEqual(self.store.get("s1", EXPECTED_IDENTITY, "ex-1"), "a")
        self.clock.advance(1)
        self.assertIsNone(self.store.get("s1", EXPECTED_IDENTITY, "ex-1"))
        self.assertIsNone(self.store.pop("s1", EXPECTED_IDENTITY, "ex-1"))
        self.assertEqual(self.store.get("s1", EXPECTED_IDENTITY, "ex-2"), "b")

    def test_pop_is_single_use(self):
        self.store.put("s1", EXPECTED_IDENTITY, "ex-1", "a")
        self.assertEqual(self.store.pop("s1", EXPECTED_IDENTITY, "ex-1"), "a")
        self.assertIsNone(self.store.pop("s1", EXPECTED_IDENTITY, "ex-1"))

    def test_keys_are_compared_as_text(self):
        self.store.put("s1", SECURITY_CONTEXT, 7, "x")
        self.assertEqual(self.store.get("s1", SECURITY_CONTEXT, "7"), "x")

    def test_discard_and_clear_session(self):
        self.store.put("s1", EXPECTED_IDENTITY, "ex-1", "a")
        self.store.put("s1", SECURITY_CONTEXT, "principal", "p")
        self.store.put("s2", SECURITY_CONTEXT, "principal", "q")

        self.assertTrue(self.store.discard("s1", EXPECTED_IDENTITY, "ex-1"))
        self.assertFalse(self.store.discard("s1", EXPECTED_IDENTITY, "ex-1"))

        self.assertEqual(self.store.clear_session("s1"), 1)
        self.assertIsNone(self.store.get("s1", SECURITY_CONTEXT, "principal"))
        self.assertEqual(self.store.get("s2", SECURITY_CONTEXT, "principal"), "q")

    def test_purge_expired(self):
        self.store.put("s1", EXPECTED_IDENTITY, "ex-1", "a", ttl_seconds=10)
        self.store.put("s1", EXPECTED_IDENTITY, "ex-2", "b", ttl_seconds=100)
        self.clock.advance(50)
        self.assertEqual(self.store.purge_expired(), 1)
        self.assertEqual(self.store.get("s1", EXPECTED_IDENTITY, "ex-2"), "b")

    def test_update_changes_live_value_in_place(self):
        self.store.put("s1", LOGIN_PENDING_OTP, "ex-1", 0, ttl_seconds=10)
        self.assertEqual(self.store.update("s1", LOGIN_PENDING_OTP, "ex-1", lambda n: n + 1), 1)
        self.assertEqual(self.store.update("s1", LOGIN_PENDING_OTP, "ex-1", lambda n: n + 1), 2)
        self.assertEqual(self.store.get("s1", LOGIN_PENDING_OTP, "ex-1"), 2)

        # updating does not extend the entry
        self.clock.advance(10)
        self.assertIsNone(self.store.update("s1", LOGIN_PENDING_OTP, "ex-1", lambda n: n + 1))
        self.assertIsNone(self.store.update("s1", LOGIN_PENDING_OTP, "missing", lambda n: n + 1))

    def test_abandoned_entries_are_swept_by_later_writes(self):
        for i in range(1000):
            self.store.put(f"gone-{i}", EXPECTED_IDENTITY, "ex", i)
        self.clock.advance(10_000)
        for i in range(SWEEP_EVERY_WRITES):
            self.store.put("s1", SECURITY_CONTEXT, "principal", i)
        self.assertEqual(self.store.size(), 1)


class TestSlidingWindowRateLimiter(unittest.TestCase):
    def test_blocks_after_max_hits_inside_window(self):
        clock = FakeClock(0.0)
        limiter = SlidingWindowRateLimiter(3, 60, clock=clock)
        self.assertTrue(all(limiter.allow("ip|/auth/login") for _ in range(3)))
        self.assertFalse(limiter.allow("ip|/auth/login"))
        self.assertTrue(limiter.allow("ip|/register"))

        clock.advance(61)
        self.assertTrue(limiter.allow("ip|/auth/login"))

    def test_idle_keys_are_forgotten(self):
        clock = FakeClock(0.0)
        limiter = SlidingWindowRateLimiter(3, 60, clock=clock)
        for i in range(1000):
            limiter.allow(f"10.0.{i // 256}.{i % 256}|/auth/login")
        clock.advance(61)
        for _ in range(SWEEP_EVERY_CALLS):
            limiter.allow("10.9.9.9|/auth/login")
        self.assertEqual(limiter.tracked_keys(), 1)

    def test_configuration_is_clamped(self):
        limiter = SlidingWindowRateLimiter(0, 1)
        self.assertEqual(limiter.max_hits, 3)
        self.assertEqual(limiter.window_seconds, 10)

    def test_client_ip_prefers_forwarded_headers(self):
        request = MagicMock()
        request.headers = {"x-forwarded-for": "10.0.0.1, 10.0.0.2"}
        self.assertEqual(client_ip(request), "10.0.0.1")

        request.headers = {"x-real-ip": "10.0.0.9"}
        self.assertEqual(client_ip(request), "10.0.0.9")

        request.headers = {}
        request.client.host = "127.0.0.1"
        self.assertEqual(client_ip(request), "127.0.0.1")


if __name__ == "__main__":
    unittest.main()
