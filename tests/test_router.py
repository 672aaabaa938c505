from unittest import IsolatedAsyncioTestCase

from codecoach.backend.core.chain import rate_limit_middleware, security_middleware
from codecoach.backend.core.errors import (
	InternalRoutingError,
	InvalidPayload,
	MalformedRequest,
	RateLimited,
	SecurityBlocked,
	UnknownOrigin,
	UnknownRoute,
)
from codecoach.backend.core.rate_limiter import RateLimiter
from codecoach.backend.core.router import MessageRouter
from codecoach.backend.core.types import CallerInfo, MiddlewareVerdict, RateLimit, Route
from codecoach.backend.schemas import ChatMessage, CompletionMessage, InboundMessage


class MessageRouterTests(IsolatedAsyncioTestCase):
	def setUp(self) -> None:
		self.calls = []

		async def ai_handler(message, routing):
			self.calls.append((message, routing))
			return {"handled": message.type}

		async def broken_handler(message, routing):
			raise ValueError("kaboom")

		self.limiter = RateLimiter()
		self.router = MessageRouter(
			[
				Route(message_type="completion", handler="ai"),
				Route(message_type="chatMessage", handler="ai"),
				Route(message_type="ping", handler="broken"),
			],
			{"ai": ai_handler, "broken": broken_handler},
			middleware=[security_middleware()],
			clock=lambda: 42.0,
		)
		self.router.add_middleware(rate_limit_middleware(self.limiter, self.router.route_limit))
		self.caller = CallerInfo(caller_id="tab-1")

	def test_validate_rejects_non_objects_and_missing_type(self) -> None:
		with self.assertRaises(MalformedRequest):
			self.router.validate(["completion"], self.caller)
		with self.assertRaises(MalformedRequest):
			self.router.validate({"problemTitle": "Two Sum"}, self.caller)
		with self.assertRaises(MalformedRequest):
			self.router.validate({"type": 7}, self.caller)

	def test_validate_requires_type_specific_fields(self) -> None:
		cases = {
			"chatMessage": {"type": "chatMessage"},
			"saveConfiguration": {"type": "saveConfiguration", "config": {}},
			"testAPIConnection": {"type": "testAPIConnection"},
			"resetHints": {"type": "resetHints"},
			"updateSetting": {"type": "updateSetting", "value": True},
		}
		for message_type, raw in cases.items():
			with self.assertRaises(InvalidPayload, msg=message_type) as ctx:
				self.router.validate(raw, self.caller)
			self.assertEqual(ctx.exception.category, "validation")
		with self.assertRaises(InvalidPayload) as ctx:
			self.router.validate({"type": "chatMessage"}, self.caller)
		self.assertEqual(ctx.exception.message, "Message is required for chat")

	def test_validate_returns_typed_message(self) -> None:
		message = self.router.validate(
			{"type": "chatMessage", "message": "why?", "context": {"problemTitle": "Two Sum"}},
			self.caller,
		)
		self.assertIsInstance(message, ChatMessage)
		self.assertEqual(message.problem_title, "Two Sum")

		completion = self.router.validate(
			{"type": "completion", "currentCode": "x = 1", "isAutoTriggered": True},
			self.caller,
		)
		self.assertIsInstance(completion, CompletionMessage)
		self.assertTrue(completion.is_auto_triggered)
		self.assertEqual(completion.language, "javascript")

	def test_unknown_type_passes_validation_but_not_routing(self) -> None:
		message = self.router.validate({"type": "teleport"}, self.caller)
		self.assertIsInstance(message, InboundMessage)

	async def test_unknown_type_raises_unknown_route(self) -> None:
		with self.assertRaises(UnknownRoute) as ctx:
			await self.router.route({"type": "teleport"}, self.caller)
		self.assertEqual(ctx.exception.category, "validation")

	def test_origin_allow_list(self) -> None:
		allowed = CallerInfo(caller_id="tab-1", origin="https://leetcode.com/problems/two-sum/")
		self.router.validate({"type": "completion"}, allowed)

		with self.assertRaises(UnknownOrigin):
			self.router.validate({"type": "completion"}, CallerInfo(caller_id="tab-1", origin="https://evil.example"))

	def test_origin_must_match_host_exactly(self) -> None:
		for origin in (
			"https://leetcode.com.evil.example",
			"https://leetcode.community",
			"https://leetcode.com@evil.example",
			"http://leetcode.com",
			"chrome-extension-evil://abc",
		):
			with self.subTest(origin=origin), self.assertRaises(UnknownOrigin):
				self.router.validate({"type": "completion"}, CallerInfo(caller_id="tab-1", origin=origin))

		for origin in ("chrome-extension://abcdefghijklmnop", "http://localhost:3000", "HTTPS://LeetCode.com"):
			with self.subTest(origin=origin):
				self.router.validate({"type": "completion"}, CallerInfo(caller_id="tab-1", origin=origin))

	def test_padded_type_uses_the_type_specific_message(self) -> None:
		with self.assertRaises(InvalidPayload) as ctx:
			self.router.validate({"type": " chatMessage "}, self.caller)
		self.assertEqual(ctx.exception.message, "Message is required for chat")

		message = self.router.validate({"type": " chatMessage ", "message": "hi"}, self.caller)
		self.assertIsInstance(message, ChatMessage)

	async def test_route_dispatches_with_metadata(self) -> None:
		result = await self.router.route(
			{"type": "completion", "problemTitle": "Two Sum"},
			CallerInfo(caller_id="tab-9", origin="chrome-extension://abc"),
		)

		self.assertEqual(result, {"handled": "completion"})
		_, routing = self.calls[0]
		self.assertEqual(routing.handler, "ai")
		self.assertEqual(routing.caller_id, "tab-9")
		self.assertEqual(routing.origin, "chrome-extension://abc")
		self.assertEqual(routing.dispatched_at, 42.0)

	async def test_security_middleware_blocks_dangerous_content(self) -> None:
		with self.assertRaises(SecurityBlocked) as ctx:
			await self.router.route(
				{"type": "chatMessage", "message": "<script>alert(1)</script>"},
				self.caller,
			)
		self.assertEqual(ctx.exception.category, "security")
		self.assertEqual(self.calls, [])
		self.assertEqual(self.router.blocked_counts()["by_category"], {"security": 1})

	async def test_rate_limit_middleware_blocks_with_retry_delay(self) -> None:
		for _ in range(10):
			await self.router.route({"type": "completion"}, self.caller)

		with self.assertRaises(RateLimited) as ctx:
			await self.router.route({"type": "completion"}, self.caller)

		self.assertEqual(ctx.exception.category, "rate_limited")
		self.assertGreater(ctx.exception.retry_delay_ms, 0)
		self.assertFalse(ctx.exception.as_payload()["shouldRetry"])
		self.assertEqual(len(self.calls), 10)

	async def test_route_rate_policy_overrides_table(self) -> None:
		self.router.update_route("chatMessage", rate_limit=RateLimit(requests=1, window_s=60.0))
		await self.router.route({"type": "chatMessage", "message": "hi"}, self.caller)
		with self.assertRaises(RateLimited):
			await self.router.route({"type": "chatMessage", "message": "again"}, self.caller)

	async def test_route_middleware_runs_after_global_chain(self) -> None:
		order = []

		def first(message, caller):
			order.append("global")
			return MiddlewareVerdict.passed()

		def per_route(message, caller):
			order.append("route")
			return MiddlewareVerdict.passed()

		router = MessageRouter(
			[Route(message_type="completion", handler="ai", middleware=[per_route])],
			{"ai": self._echo},
			middleware=[first],
		)
		await router.route({"type": "completion"}, self.caller)
		self.assertEqual(order, ["global", "route"])

	async def test_raising_middleware_counts_as_blocked(self) -> None:
		def explode(message, caller):
			raise RuntimeError("bad middleware")

		self.router.add_middleware(explode)
		with self.assertRaises(SecurityBlocked) as ctx:
			await self.router.route({"type": "completion"}, self.caller)
		self.assertEqual(ctx.exception.message, "Middleware processing error")

		self.assertTrue(self.router.remove_middleware(explode))
		await self.router.route({"type": "completion"}, self.caller)

	async def test_handler_exception_becomes_internal_routing_error(self) -> None:
		with self.assertRaises(InternalRoutingError) as ctx:
			await self.router.route({"type": "ping"}, self.caller)
		self.assertEqual(ctx.exception.category, "unknown")
		self.assertEqual(ctx.exception.message, "Internal routing error")
		self.assertEqual(self.router.stats()["failed"], 1)

	async def test_route_bookkeeping(self) -> None:
		self.assertTrue(self.router.has_route("completion"))
		self.router.add_route("hint", "ai")
		self.assertEqual(self.router.get_route("hint").handler, "ai")
		self.assertTrue(self.router.remove_route("hint"))
		self.assertFalse(self.router.remove_route("hint"))
		self.assertFalse(self.router.update_route("hint", handler="ai"))

		stats = self.router.stats()
		self.assertEqual(stats["total_routes"], 3)
		self.assertEqual(stats["middleware_count"], 2)
		self.assertEqual({route["type"] for route in stats["routes"]}, {"completion", "chatMessage", "ping"})

		self.router.close()
		self.assertEqual(self.router.stats()["total_routes"], 0)
		with self.assertRaises(UnknownRoute):
			await self.router.route({"type": "completion"}, self.caller)

	async def _echo(self, message, routing):
		return {"type": message.type}
