from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from codecoach.backend import constants
from codecoach.backend.core import policies
from codecoach.backend.core.errors import (
	InternalRoutingError,
	InvalidPayload,
	MalformedRequest,
	RateLimited,
	ResilienceError,
	RoutingError,
	SecurityBlocked,
	UnknownOrigin,
	UnknownRoute,
)
from codecoach.backend.core.types import (
	CallerInfo,
	Handler,
	Middleware,
	MiddlewareVerdict,
	RateLimit,
	Route,
	RoutingMetadata,
)
from codecoach.backend.schemas import InboundMessage, model_for


logger = logging.getLogger(__name__)

_REQUIRED_FIELD_MESSAGES = {
	"chatMessage": "Message is required for chat",
	"saveConfiguration": "Configuration is required for save request",
	"testAPIConnection": "Configuration is required for API testing",
	"resetHints": "Problem title is required for hint reset",
	"updateSetting": "Setting name is required",
}


class MessageRouter:
	"""Validates inbound messages, runs the middleware chain and dispatches.

	The route table and the global middleware list are explicit: both are
	handed over at construction and changed only through the methods below.
	Global middleware runs in insertion order, followed by the matched
	route's own middleware.
	"""

	def __init__(
		self,
		routes: Iterable[Route],
		handlers: Mapping[str, Handler],
		*,
		middleware: Optional[Sequence[Middleware]] = None,
		allowed_origins: Sequence[str] = constants.DEFAULT_ALLOWED_ORIGINS,
		clock: Callable[[], float] = time.time,
	):
		self._routes: Dict[str, Route] = {route.message_type: route for route in routes}
		self._handlers: Dict[str, Handler] = dict(handlers)
		self._middleware: List[Middleware] = list(middleware or [])
		self._allowed_origins = tuple(allowed_origins)
		self._clock = clock
		self._dispatched = 0
		self._failed = 0
		self._blocked: Dict[str, int] = {}
		self._blocked_reasons: Dict[str, int] = {}

	def validate(self, raw: Any, caller: CallerInfo) -> InboundMessage:
		if not isinstance(raw, dict):
			raise MalformedRequest("Invalid message format")
		message_type = raw.get("type")
		if not isinstance(message_type, str) or not message_type.strip():
			raise MalformedRequest("Message type is required")
		if caller.origin and not policies.origin_allowed(caller.origin, self._allowed_origins):
			raise UnknownOrigin("Unknown sender origin", evidence=[caller.origin])
		message_type = message_type.strip()
		model = model_for(message_type)
		try:
			return model.model_validate({**raw, "type": message_type})
		except ValidationError as exc:
			evidence = []
			for issue in exc.errors():
				loc = ".".join(str(part) for part in issue.get("loc", []))
				msg = issue.get("msg", "Invalid value.")
				evidence.append(f"{loc}: {msg}" if loc else msg)
			message = _REQUIRED_FIELD_MESSAGES.get(message_type, f"Invalid payload for {message_type}")
			raise InvalidPayload(message, evidence=evidence) from exc

	async def route(self, raw: Any, caller: CallerInfo) -> Dict[str, Any]:
		message = self.validate(raw, caller)
		route = self._routes.get(message.type)
		if route is None:
			raise UnknownRoute(f"Unknown message type: {message.type}")

		for middleware in [*self._middleware, *route.middleware]:
			try:
				verdict = middleware(message, caller)
			except Exception:
				logger.exception("Middleware failed while handling %s", message.type)
				verdict = MiddlewareVerdict.block("Middleware processing error")
			if verdict.blocked:
				self._record_block(verdict)
				raise self._blocked_error(verdict)

		handler = self._handlers.get(route.handler)
		if handler is None:
			self._failed += 1
			logger.error("No handler registered under %s for %s", route.handler, message.type)
			raise InternalRoutingError("Internal routing error", evidence=[f"handler {route.handler} not found"])

		routing = RoutingMetadata(
			handler=route.handler,
			dispatched_at=self._clock(),
			caller_id=caller.caller_id,
			origin=caller.origin,
		)
		logger.debug("Dispatching %s from %s to %s", message.type, caller.caller_id, route.handler)
		self._dispatched += 1
		try:
			return await handler(message, routing)
		except (RoutingError, ResilienceError):
			self._failed += 1
			raise
		except Exception as exc:
			self._failed += 1
			logger.exception("Handler %s failed for %s", route.handler, message.type)
			raise InternalRoutingError("Internal routing error") from exc

	def add_route(self, message_type: str, handler: str, *, middleware: Optional[Sequence[Middleware]] = None, rate_limit: Optional[RateLimit] = None) -> Route:
		route = Route(
			message_type=message_type,
			handler=handler,
			middleware=list(middleware or []),
			rate_limit=rate_limit,
		)
		self._routes[message_type] = route
		logger.info("Route added: %s -> %s", message_type, handler)
		return route

	def remove_route(self, message_type: str) -> bool:
		removed = self._routes.pop(message_type, None) is not None
		if removed:
			logger.info("Route removed: %s", message_type)
		return removed

	def update_route(
		self,
		message_type: str,
		*,
		handler: Optional[str] = None,
		middleware: Optional[Sequence[Middleware]] = None,
		rate_limit: Optional[RateLimit] = None,
	) -> bool:
		route = self._routes.get(message_type)
		if route is None:
			return False
		if handler is not None:
			route.handler = handler
		if middleware is not None:
			route.middleware = list(middleware)
		if rate_limit is not None:
			route.rate_limit = rate_limit
		logger.info("Route updated: %s", message_type)
		return True

	def get_route(self, message_type: str) -> Optional[Route]:
		return self._routes.get(message_type)

	def has_route(self, message_type: str) -> bool:
		return message_type in self._routes

	def route_limit(self, message_type: str) -> Optional[RateLimit]:
		route = self._routes.get(message_type)
		return route.rate_limit if route else None

	def routes(self) -> List[Dict[str, object]]:
		return [route.as_dict() for route in self._routes.values()]

	def register_handler(self, name: str, handler: Handler) -> None:
		self._handlers[name] = handler

	def add_middleware(self, middleware: Middleware) -> None:
		self._middleware.append(middleware)

	def remove_middleware(self, middleware: Middleware) -> bool:
		try:
			self._middleware.remove(middleware)
		except ValueError:
			return False
		return True

	def blocked_counts(self) -> Dict[str, Dict[str, int]]:
		return {"by_category": dict(self._blocked), "by_reason": dict(self._blocked_reasons)}

	def stats(self) -> Dict[str, object]:
		return {
			"total_routes": len(self._routes),
			"middleware_count": len(self._middleware),
			"dispatched": self._dispatched,
			"failed": self._failed,
			"blocked": sum(self._blocked.values()),
			"routes": self.routes(),
		}

	def close(self) -> None:
		self._routes.clear()
		self._middleware.clear()
		logger.info("Message router closed")

	def _record_block(self, verdict: MiddlewareVerdict) -> None:
		self._blocked[verdict.category] = self._blocked.get(verdict.category, 0) + 1
		self._blocked_reasons[verdict.reason] = self._blocked_reasons.get(verdict.reason, 0) + 1

	def _blocked_error(self, verdict: MiddlewareVerdict) -> RoutingError:
		reason = verdict.reason or "Request blocked"
		if verdict.category == "rate_limited":
			return RateLimited(reason, retry_after_seconds=verdict.retry_after_seconds or 1)
		return SecurityBlocked(reason)
