from __future__ import annotations

import logging
import math
import time
from typing import Callable, Dict, List, Mapping, Optional

from codecoach.backend import constants
from codecoach.backend.core.types import RateDecision, RateLimit


logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def default_limits() -> Dict[str, RateLimit]:
	return {
		message_type: RateLimit(requests=requests, window_s=window_s)
		for message_type, (requests, window_s) in constants.DEFAULT_RATE_LIMITS.items()
	}


class RateLimiter:
	"""Dual-scope sliding-window limiter.

	A request is granted only when both the caller's own window for the
	request type and the shared window for that type have room. The shared
	ceiling is ``GLOBAL_LIMIT_MULTIPLIER`` times the caller ceiling. State is
	process-local and mutated only from the event loop thread.
	"""

	def __init__(
		self,
		limits: Optional[Mapping[str, RateLimit]] = None,
		*,
		clock: Clock = time.monotonic,
		retention_s: float = constants.RATE_HISTORY_RETENTION_S,
	):
		self._limits: Dict[str, RateLimit] = default_limits()
		if limits:
			self._limits.update(limits)
		self._clock = clock
		self._retention_s = retention_s
		self._tab_history: Dict[str, Dict[str, List[float]]] = {}
		self._global_history: Dict[str, List[float]] = {}
		# longest window each type was checked against, route overrides included
		self._longest_window: Dict[str, float] = {}

	@property
	def limits(self) -> Dict[str, RateLimit]:
		return dict(self._limits)

	def limit_for(self, request_type: str) -> RateLimit:
		return self._limits.get(request_type) or self._limits["default"]

	def check_and_reserve(
		self,
		request_type: str,
		scope_key: str = "global",
		*,
		limit: Optional[RateLimit] = None,
	) -> RateDecision:
		now = self._clock()
		active = limit or self.limit_for(request_type)
		if active.window_s > self._longest_window.get(request_type, 0.0):
			self._longest_window[request_type] = active.window_s

		tab_windows = self._tab_history.setdefault(scope_key, {})
		tab_window = _compact(tab_windows.get(request_type, []), now, active.window_s)
		tab_windows[request_type] = tab_window
		if len(tab_window) >= active.requests:
			return RateDecision(
				allowed=False,
				retry_after_seconds=_retry_after(tab_window, now, active.window_s),
				scope="tab_limit",
			)

		global_window = _compact(self._global_history.get(request_type, []), now, active.window_s)
		self._global_history[request_type] = global_window
		if len(global_window) >= active.requests * constants.GLOBAL_LIMIT_MULTIPLIER:
			return RateDecision(
				allowed=False,
				retry_after_seconds=_retry_after(global_window, now, active.window_s),
				scope="global_limit",
			)

		tab_window.append(now)
		global_window.append(now)
		return RateDecision(allowed=True)

	def status(self, request_type: str, scope_key: str = "global") -> Dict[str, object]:
		now = self._clock()
		active = self.limit_for(request_type)
		cutoff = now - active.window_s
		tab_recent = [ts for ts in self._tab_history.get(scope_key, {}).get(request_type, []) if ts > cutoff]
		global_recent = [ts for ts in self._global_history.get(request_type, []) if ts > cutoff]
		global_limit = active.requests * constants.GLOBAL_LIMIT_MULTIPLIER
		return {
			"request_type": request_type,
			"scope_key": scope_key,
			"tab": _scope_status(tab_recent, active.requests, active.window_s, now),
			"global": _scope_status(global_recent, global_limit, active.window_s, now),
		}

	def is_throttled(self, request_type: str, scope_key: str = "global") -> bool:
		status = self.status(request_type, scope_key)
		return status["tab"]["remaining"] == 0 or status["global"]["remaining"] == 0  # type: ignore[index]

	def time_until_reset(self, request_type: str, scope_key: str = "global") -> float:
		status = self.status(request_type, scope_key)
		return max(status["tab"]["reset_in_s"], status["global"]["reset_in_s"])  # type: ignore[index]

	def update_limits(self, limits: Mapping[str, RateLimit]) -> None:
		self._limits.update(limits)

	def cleanup(self) -> int:
		now = self._clock()
		removed = 0
		for scope_key in list(self._tab_history):
			windows = self._tab_history[scope_key]
			for request_type in list(windows):
				cutoff = now - self._horizon(request_type)
				kept = [ts for ts in windows[request_type] if ts > cutoff]
				removed += len(windows[request_type]) - len(kept)
				if kept:
					windows[request_type] = kept
				else:
					del windows[request_type]
			if not windows:
				del self._tab_history[scope_key]
		for request_type in list(self._global_history):
			cutoff = now - self._horizon(request_type)
			kept = [ts for ts in self._global_history[request_type] if ts > cutoff]
			removed += len(self._global_history[request_type]) - len(kept)
			if kept:
				self._global_history[request_type] = kept
			else:
				del self._global_history[request_type]
		if removed:
			logger.debug("Rate limiter cleanup dropped %d stale timestamps", removed)
		return removed

	def _horizon(self, request_type: str) -> float:
		return max(
			self._retention_s,
			self.limit_for(request_type).window_s,
			self._longest_window.get(request_type, 0.0),
		)

	def cleanup_tab(self, scope_key: str) -> None:
		self._tab_history.pop(scope_key, None)

	def clear(self) -> None:
		self._tab_history.clear()
		self._global_history.clear()

	def statistics(self) -> Dict[str, object]:
		now = self._clock()
		requests_by_type: Dict[str, int] = {}
		requests_by_tab: Dict[str, int] = {}
		for scope_key, windows in self._tab_history.items():
			tab_total = 0
			for request_type, timestamps in windows.items():
				recent = sum(1 for ts in timestamps if now - ts < 3600)
				requests_by_type[request_type] = requests_by_type.get(request_type, 0) + recent
				tab_total += recent
			requests_by_tab[scope_key] = tab_total
		recent_activity = {
			request_type: sum(1 for ts in timestamps if now - ts < 300)
			for request_type, timestamps in self._global_history.items()
		}
		return {
			"total_tabs": len(self._tab_history),
			"requests_by_type": requests_by_type,
			"requests_by_tab": requests_by_tab,
			"recent_activity": recent_activity,
			"limits": {
				name: {"requests": limit.requests, "window_s": limit.window_s}
				for name, limit in self._limits.items()
			},
		}


def _compact(timestamps: List[float], now: float, window_s: float) -> List[float]:
	cutoff = now - window_s
	return [ts for ts in timestamps if ts > cutoff]


def _retry_after(window: List[float], now: float, window_s: float) -> int:
	oldest = window[0]
	return max(1, math.ceil(oldest + window_s - now))


def _scope_status(recent: List[float], limit: int, window_s: float, now: float) -> Dict[str, object]:
	reset_in = (recent[0] + window_s - now) if recent else 0.0
	return {
		"used": len(recent),
		"limit": limit,
		"remaining": max(0, limit - len(recent)),
		"reset_in_s": max(0.0, reset_in),
	}
