from __future__ import annotations

import functools
import logging
import time
from typing import Any, Dict, List, Optional

from codecoach.backend import constants
from codecoach.backend.adapters import sqlite_adapter
from codecoach.backend.config import GatewayConfig, load_config
from codecoach.backend.core import (
	CallerInfo,
	HintSessionManager,
	MessageRouter,
	PeriodicSweeper,
	RateLimiter,
	ResilienceExecutor,
	Route,
)
from codecoach.backend.core.chain import rate_limit_middleware, security_middleware
from codecoach.backend.services import assistant_service, config_service, hint_service, system_service


logger = logging.getLogger(__name__)


def default_routes() -> List[Route]:
	handler_by_types = {
		"ai": constants.AI_MESSAGE_TYPES,
		"config": constants.CONFIG_MESSAGE_TYPES,
		"hints": constants.HINT_MESSAGE_TYPES,
		"security": constants.SECURITY_MESSAGE_TYPES,
		"system": constants.SYSTEM_MESSAGE_TYPES,
	}
	return [
		Route(message_type=message_type, handler=handler)
		for handler, message_types in handler_by_types.items()
		for message_type in message_types
	]


class Gateway:
	"""Owns the process-local state behind the message endpoint.

	Everything is built once from a ``GatewayConfig``; the FastAPI lifespan
	calls ``start``/``stop`` to run the periodic sweeper.
	"""

	def __init__(self, config: Optional[GatewayConfig] = None):
		self.config = config or load_config()
		self.started_at = time.time()
		self.limiter = RateLimiter(self.config.rate_limits)
		self.executor = ResilienceExecutor(self.config.retry_policies)
		self.hints = HintSessionManager(
			ttl_s=self.config.hint_session_ttl_s,
			max_sessions_per_caller=self.config.hint_max_sessions,
		)
		handlers = {
			"ai": functools.partial(assistant_service.handle, self),
			"config": functools.partial(config_service.handle, self),
			"hints": functools.partial(hint_service.handle, self),
			"security": functools.partial(system_service.handle_security, self),
			"system": functools.partial(system_service.handle, self),
		}
		self.router = MessageRouter(
			default_routes(),
			handlers,
			middleware=[security_middleware()],
			allowed_origins=self.config.allowed_origins,
		)
		self.router.add_middleware(rate_limit_middleware(self.limiter, self.router.route_limit))
		self.sweeper = PeriodicSweeper(
			self.config.sweep_interval_s,
			{
				"rate_windows": self.limiter.cleanup,
				"retry_records": self.executor.purge_stale,
				"hint_sessions": self.hints.purge_expired,
			},
		)

	async def dispatch(self, raw: Any, caller: CallerInfo) -> Dict[str, Any]:
		return await self.router.route(raw, caller)

	def start(self) -> None:
		sqlite_adapter.init_db(self.config.db_path)
		self.sweeper.start()
		logger.info("Gateway started (sweep every %ss)", self.config.sweep_interval_s)

	async def stop(self) -> None:
		await self.sweeper.stop()
		logger.info("Gateway stopped")

	def forget_caller(self, caller_id: str) -> Dict[str, Any]:
		self.limiter.cleanup_tab(caller_id)
		cleared = self.hints.clear_tab(caller_id)
		return {"caller_id": caller_id, "hint_sessions_cleared": cleared}

	def stats(self) -> Dict[str, Any]:
		return {
			"uptime_s": round(time.time() - self.started_at, 3),
			"router": self.router.stats(),
			"rate_limiter": self.limiter.statistics(),
			"resilience": self.executor.stats(),
			"hints": self.hints.stats(),
			"usage": sqlite_adapter.get_usage(self.config.db_path),
			"sweeper": {"running": self.sweeper.running, "runs": self.sweeper.runs},
		}

	def health(self) -> Dict[str, Any]:
		return {
			"status": "ok",
			"app": constants.APP_NAME,
			"version": constants.APP_VERSION,
			"uptime_s": round(time.time() - self.started_at, 3),
			"routes": self.router.stats()["total_routes"],
			"hint_sessions": len(self.hints),
			"rate_limited_callers": self.limiter.statistics()["total_tabs"],
			"resilience": self.executor.stats(),
			"sweeper_running": self.sweeper.running,
		}
