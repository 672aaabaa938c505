from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from codecoach.backend.core import policies
from codecoach.backend.core.rate_limiter import RateLimiter
from codecoach.backend.core.types import CallerInfo, Middleware, MiddlewareVerdict, RateLimit


logger = logging.getLogger(__name__)

LimitLookup = Callable[[str], Optional[RateLimit]]


def _serialize(message: Any) -> str:
	if hasattr(message, "model_dump"):
		return json.dumps(message.model_dump(mode="json", by_alias=True), default=str)
	return json.dumps(message, default=str)


def _message_type(message: Any) -> str:
	if isinstance(message, dict):
		return str(message.get("type", "default"))
	return str(getattr(message, "type", "default"))


def security_middleware() -> Middleware:
	def check(message: Any, caller: CallerInfo) -> MiddlewareVerdict:
		pattern = policies.find_dangerous_pattern(_serialize(message))
		if pattern is None:
			return MiddlewareVerdict.passed()
		logger.warning(
			"Blocked %s from %s: dangerous pattern %s",
			_message_type(message),
			caller.caller_id,
			pattern,
		)
		return MiddlewareVerdict.block("Request contains potentially dangerous content")

	return check


def rate_limit_middleware(limiter: RateLimiter, limit_lookup: Optional[LimitLookup] = None) -> Middleware:
	def check(message: Any, caller: CallerInfo) -> MiddlewareVerdict:
		request_type = _message_type(message)
		override = limit_lookup(request_type) if limit_lookup else None
		decision = limiter.check_and_reserve(request_type, caller.caller_id, limit=override)
		if decision.allowed:
			return MiddlewareVerdict.passed()
		logger.info(
			"Rate limited %s for %s (%s, retry in %ds)",
			request_type,
			caller.caller_id,
			decision.scope,
			decision.retry_after_seconds,
		)
		return MiddlewareVerdict.block(
			f"Rate limit exceeded. Try again in {decision.retry_after_seconds} seconds.",
			category="rate_limited",
			retry_after_seconds=decision.retry_after_seconds,
		)

	return check
