from unittest import TestCase

from codecoach.backend.core.rate_limiter import RateLimiter
from codecoach.backend.core.types import RateLimit


class _Clock:
	def __init__(self, now: float = 1000.0):
		self.now = now

	def __call__(self) -> float:
		return self.now


class RateLimiterTests(TestCase):
	def setUp(self) -> None:
		self.clock = _Clock()
		self.limiter = RateLimiter(clock=self.clock)

	def test_ten_completions_pass_and_eleventh_is_denied(self) -> None:
		for _ in range(10):
			decision = self.limiter.check_and_reserve("completion", "tab-1")
			self.assertTrue(decision.allowed)
			self.clock.now += 1

		denied = self.limiter.check_and_reserve("completion", "tab-1")
		self.assertFalse(denied.allowed)
		self.assertEqual(denied.scope, "tab_limit")
		self.assertEqual(denied.retry_after_seconds, 50)

	def test_denied_request_does_not_consume_capacity(self) -> None:
		for _ in range(5):
			self.limiter.check_and_reserve("explanation", "tab-1")
		self.assertFalse(self.limiter.check_and_reserve("explanation", "tab-1").allowed)
		self.assertFalse(self.limiter.check_and_reserve("explanation", "tab-1").allowed)

		status = self.limiter.status("explanation", "tab-1")
		self.assertEqual(status["tab"]["used"], 5)
		self.assertEqual(status["global"]["used"], 5)
		self.assertTrue(self.limiter.is_throttled("explanation", "tab-1"))

	def test_window_slides_and_capacity_returns(self) -> None:
		for _ in range(5):
			self.limiter.check_and_reserve("optimization", "tab-1")
		self.assertFalse(self.limiter.check_and_reserve("optimization", "tab-1").allowed)

		self.clock.now += 60
		self.assertTrue(self.limiter.check_and_reserve("optimization", "tab-1").allowed)

	def test_global_ceiling_is_twice_the_tab_ceiling(self) -> None:
		for tab in ("tab-1", "tab-2"):
			for _ in range(15):
				self.assertTrue(self.limiter.check_and_reserve("hint", tab).allowed)

		denied = self.limiter.check_and_reserve("hint", "tab-3")
		self.assertFalse(denied.allowed)
		self.assertEqual(denied.scope, "global_limit")
		self.assertGreaterEqual(denied.retry_after_seconds, 1)

	def test_unknown_type_uses_default_limit(self) -> None:
		for _ in range(20):
			self.assertTrue(self.limiter.check_and_reserve("ping", "tab-1").allowed)
		self.assertFalse(self.limiter.check_and_reserve("ping", "tab-1").allowed)

	def test_explicit_limit_overrides_table(self) -> None:
		limit = RateLimit(requests=2, window_s=10.0)
		self.assertTrue(self.limiter.check_and_reserve("completion", "tab-1", limit=limit).allowed)
		self.assertTrue(self.limiter.check_and_reserve("completion", "tab-1", limit=limit).allowed)
		denied = self.limiter.check_and_reserve("completion", "tab-1", limit=limit)
		self.assertFalse(denied.allowed)
		self.assertEqual(denied.retry_after_seconds, 10)

	def test_retry_after_is_at_least_one_second(self) -> None:
		limit = RateLimit(requests=1, window_s=1.0)
		self.limiter.check_and_reserve("completion", "tab-1", limit=limit)
		self.clock.now += 0.999
		denied = self.limiter.check_and_reserve("completion", "tab-1", limit=limit)
		self.assertFalse(denied.allowed)
		self.assertEqual(denied.retry_after_seconds, 1)

	def test_cleanup_drops_entries_past_retention(self) -> None:
		self.limiter.check_and_reserve("completion", "tab-1")
		self.limiter.check_and_reserve("hint", "tab-2")
		self.clock.now += 601

		removed = self.limiter.cleanup()

		self.assertEqual(removed, 4)
		stats = self.limiter.statistics()
		self.assertEqual(stats["total_tabs"], 0)
		self.assertEqual(stats["recent_activity"], {})

	def test_cleanup_keeps_recent_entries(self) -> None:
		self.limiter.check_and_reserve("completion", "tab-1")
		self.clock.now += 30
		self.assertEqual(self.limiter.cleanup(), 0)
		self.assertEqual(self.limiter.status("completion", "tab-1")["tab"]["used"], 1)

	def test_cleanup_keeps_entries_inside_a_long_window(self) -> None:
		limiter = RateLimiter({"completion": RateLimit(2, 3600.0)}, clock=self.clock)
		self.assertTrue(limiter.check_and_reserve("completion", "tab-1").allowed)
		self.assertTrue(limiter.check_and_reserve("completion", "tab-1").allowed)
		self.assertFalse(limiter.check_and_reserve("completion", "tab-1").allowed)

		self.clock.now += 700
		self.assertEqual(limiter.cleanup(), 0)

		self.assertFalse(limiter.check_and_reserve("completion", "tab-1").allowed)
		self.clock.now += 2901
		self.assertTrue(limiter.check_and_reserve("completion", "tab-1").allowed)

	def test_cleanup_respects_per_call_window(self) -> None:
		long_limit = RateLimit(1, 3600.0)
		self.assertTrue(self.limiter.check_and_reserve("hint", "tab-1", limit=long_limit).allowed)

		self.clock.now += 700
		self.limiter.cleanup()

		self.assertFalse(self.limiter.check_and_reserve("hint", "tab-1", limit=long_limit).allowed)

	def test_cleanup_tab_frees_only_that_caller(self) -> None:
		for _ in range(10):
			self.limiter.check_and_reserve("completion", "tab-1")
		self.limiter.cleanup_tab("tab-1")

		self.assertTrue(self.limiter.check_and_reserve("completion", "tab-1").allowed)
		self.assertEqual(self.limiter.status("completion", "tab-1")["global"]["used"], 11)

	def test_update_limits_applies_to_new_checks(self) -> None:
		self.limiter.update_limits({"completion": RateLimit(requests=1, window_s=60.0)})
		self.assertTrue(self.limiter.check_and_reserve("completion", "tab-1").allowed)
		self.assertFalse(self.limiter.check_and_reserve("completion", "tab-1").allowed)
		self.assertEqual(self.limiter.limit_for("completion").requests, 1)

	def test_time_until_reset_reports_oldest_expiry(self) -> None:
		self.limiter.check_and_reserve("completion", "tab-1")
		self.clock.now += 15
		self.assertAlmostEqual(self.limiter.time_until_reset("completion", "tab-1"), 45.0)
