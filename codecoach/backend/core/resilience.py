from __future__ import annotations

import asyncio
import logging
import math
import random
import re
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from codecoach.backend import constants
from codecoach.backend.core import policies
from codecoach.backend.core.errors import ResilienceError
from codecoach.backend.core.types import (
	ERROR_CATEGORIES,
	ErrorClassification,
	RetryAttempt,
	RetryPolicy,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]

_NETWORK_ERROR_NAMES = {"APIConnectionError", "ConnectError", "ConnectionError", "NetworkError"}
_TIMEOUT_ERROR_NAMES = {"APITimeoutError", "TimeoutError", "ReadTimeout", "ConnectTimeout", "TimeoutException"}
_NETWORK_ERROR_CODES = {"ENOTFOUND", "ECONNREFUSED", "ECONNRESET", "ETIMEDOUT"}

_TIMEOUT_MARKERS = ("timed out", "timeout", "gateway timeout")
_NETWORK_MARKERS = (
	"network",
	"fetch",
	"connection",
	"dns",
	"socket",
	"enotfound",
	"econnrefused",
	"econnreset",
)
_CONFIGURATION_MARKERS = ("not configured", "missing config", "setup required", "configuration")
_AUTH_MARKERS = (
	"unauthorized",
	"invalid api key",
	"invalid_api_key",
	"authentication",
	"api key",
	"credentials",
	"permission denied",
)
_QUOTA_MARKERS = (
	"quota exceeded",
	"insufficient_quota",
	"usage limit",
	"billing",
	"monthly limit",
	"credit limit",
	"usage cap",
)
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "throttled", "rate_limit_exceeded", "requests per minute")
_VALIDATION_MARKERS = ("validation", "bad request", "malformed", "invalid_request_error", "invalid parameter")
_UPSTREAM_MARKERS = ("internal server error", "service unavailable", "bad gateway")

# "retry after 7", "retry-after: 7", "retrying in 0.5s"
_RETRY_HINT = re.compile(r"retry(?:ing)?(?:[- ]?after| in)[\s:=]*(\d+(?:\.\d+)?)")

_USER_MESSAGES: Dict[str, str] = {
	"network": "Unable to connect to the AI service. Please check your internet connection and try again.",
	"authentication": "There's an authentication issue with your API key. Please check your credentials in the settings.",
	"quota_exceeded": "You've reached your usage limit for this AI service. Please check your account billing or upgrade your plan.",
	"timeout": "The request timed out. The AI service might be experiencing high load. Please try again in a moment.",
	"validation": "There's an issue with the request format. Please try again or check your code input.",
	"upstream_server_error": "The AI service is temporarily unavailable. Please try again in a few moments.",
	"configuration": "Please configure your AI provider settings before using the assistant.",
	"unknown": "An unexpected error occurred. Please try again, and if the problem persists, check your settings.",
}


def default_policies() -> Dict[str, RetryPolicy]:
	return {
		category: RetryPolicy(max_retries=max_retries, base_delay_s=base, max_delay_s=cap)
		for category, (max_retries, base, cap) in constants.DEFAULT_RETRY_POLICIES.items()
	}


def _http_status(error: BaseException, context: Mapping[str, Any]) -> Optional[int]:
	for candidate in (
		getattr(error, "status_code", None),
		getattr(error, "status", None),
		context.get("http_status"),
	):
		if isinstance(candidate, int) and not isinstance(candidate, bool):
			return candidate
	return None


def _retry_after_hint(error: BaseException, message: str, context: Mapping[str, Any]) -> Optional[float]:
	explicit = getattr(error, "retry_after", None)
	if explicit is None:
		explicit = context.get("retry_after")
	if isinstance(explicit, (int, float)) and not isinstance(explicit, bool) and explicit >= 0:
		return float(explicit)
	response = getattr(error, "response", None)
	headers = getattr(response, "headers", None)
	if headers is not None:
		try:
			header_value = headers.get("retry-after")
		except AttributeError:
			header_value = None
		if header_value is not None:
			try:
				return max(0.0, float(header_value))
			except (TypeError, ValueError):
				pass
	match = _RETRY_HINT.search(message)
	if match:
		return float(match.group(1))
	return None


def _contains(message: str, markers: tuple[str, ...]) -> bool:
	return any(marker in message for marker in markers)


def classify(error: BaseException, context: Optional[Mapping[str, Any]] = None) -> ErrorClassification:
	"""Map an arbitrary exception onto the error taxonomy.

	Explicit HTTP status codes win over everything else. Without a status the
	exception type and lowercased message are matched against ordered marker
	sets; the first match decides. ``unknown`` is the fallback, so this never
	raises.
	"""
	ctx: Mapping[str, Any] = context or {}
	message = str(error).lower()
	status = _http_status(error, ctx)
	name = error.__class__.__name__

	if status in (401, 403):
		return ErrorClassification(category="authentication", http_status=status)
	if status == 429:
		if "quota" in message or "billing" in message:
			return ErrorClassification(category="quota_exceeded", http_status=status)
		return ErrorClassification(
			category="rate_limited",
			http_status=status,
			retry_after_s=_retry_after_hint(error, message, ctx),
		)
	if status == 400:
		return ErrorClassification(category="validation", http_status=status)
	if status is not None and 500 <= status <= 599:
		return ErrorClassification(category="upstream_server_error", http_status=status)

	if isinstance(error, asyncio.TimeoutError) or name in _TIMEOUT_ERROR_NAMES or _contains(message, _TIMEOUT_MARKERS):
		return ErrorClassification(category="timeout", http_status=status)
	if (
		isinstance(error, ConnectionError)
		or name in _NETWORK_ERROR_NAMES
		or getattr(error, "code", None) in _NETWORK_ERROR_CODES
		or _contains(message, _NETWORK_MARKERS)
	):
		return ErrorClassification(category="network", http_status=status)
	if (
		_contains(message, _CONFIGURATION_MARKERS)
		or ctx.get("type") == "configuration"
		or ("api key" in message and "not found" in message)
	):
		return ErrorClassification(category="configuration", http_status=status)
	if _contains(message, _AUTH_MARKERS):
		return ErrorClassification(category="authentication", http_status=status)
	if _contains(message, _QUOTA_MARKERS):
		return ErrorClassification(category="quota_exceeded", http_status=status)
	if _contains(message, _RATE_LIMIT_MARKERS):
		return ErrorClassification(
			category="rate_limited",
			http_status=status,
			retry_after_s=_retry_after_hint(error, message, ctx),
		)
	if _contains(message, _VALIDATION_MARKERS):
		return ErrorClassification(category="validation", http_status=status)
	if _contains(message, _UPSTREAM_MARKERS):
		return ErrorClassification(category="upstream_server_error", http_status=status)
	return ErrorClassification(category="unknown", http_status=status)


def to_user_message(classification: ErrorClassification) -> str:
	category = classification.category
	status = classification.http_status
	if category == "rate_limited":
		wait_s = math.ceil(classification.retry_after_s) if classification.retry_after_s else 60
		return f"You've made too many requests recently. Please wait {wait_s} seconds before trying again."
	if category == "authentication":
		if status == 401:
			return "Your API key appears to be invalid. Please check your credentials in the settings."
		if status == 403:
			return "Access denied. Please verify your API key has the necessary permissions for this service."
	if category == "upstream_server_error":
		if status == 500:
			return "The AI service is experiencing internal issues. Please try again in a few moments."
		if status in (502, 503):
			return "The AI service is temporarily unavailable. Please try again shortly."
		if status == 504:
			return "The AI service is taking too long to respond. Please try again."
	return _USER_MESSAGES.get(category, _USER_MESSAGES["unknown"])


def error_payload(error: BaseException, request_id: Optional[str] = None) -> Dict[str, object]:
	"""Outbound error body for a failed provider call.

	A ``ResilienceError`` already carries its classification; anything else is
	classified here and reported as terminal.
	"""
	if isinstance(error, ResilienceError):
		body = error.as_payload()
		if request_id and "requestId" not in body:
			body["requestId"] = request_id
		return body
	classification = classify(error)
	payload: Dict[str, object] = {
		"error": to_user_message(classification),
		"errorCategory": classification.category,
		"shouldRetry": False,
		"code": f"provider_{classification.category}",
	}
	if classification.http_status is not None:
		payload["httpStatus"] = classification.http_status
	if request_id:
		payload["requestId"] = request_id
	return payload


class ResilienceExecutor:
	"""Bounded retry loop around a fallible async operation.

	Attempt counts live in a per-request record that is created on the first
	failure, bumped on each scheduled retry and dropped on success. Records
	abandoned by callers that went away are removed by ``purge_stale``.
	"""

	def __init__(
		self,
		policies_by_category: Optional[Mapping[str, RetryPolicy]] = None,
		*,
		sleep: Sleep = asyncio.sleep,
		jitter: Optional[Callable[[], float]] = None,
		clock: Callable[[], float] = time.monotonic,
		record_max_age_s: float = constants.RETRY_RECORD_MAX_AGE_S,
	):
		self._policies: Dict[str, RetryPolicy] = default_policies()
		if policies_by_category:
			self._policies.update(policies_by_category)
		self._sleep = sleep
		self._jitter = jitter or (lambda: random.uniform(0.0, constants.RETRY_JITTER_MAX_S))
		self._clock = clock
		self._record_max_age_s = record_max_age_s
		self._attempts: Dict[str, RetryAttempt] = {}
		self._stats = _new_stats()

	def policy_for(self, category: str) -> RetryPolicy:
		return self._policies.get(category) or self._policies["unknown"]

	def attempt_count(self, request_id: str) -> int:
		record = self._attempts.get(request_id)
		return record.count if record else 0

	def has_record(self, request_id: str) -> bool:
		return request_id in self._attempts

	def compute_delay(self, classification: ErrorClassification, attempt: int) -> float:
		policy = self.policy_for(classification.category)
		if classification.category == "rate_limited" and classification.retry_after_s is not None:
			return min(classification.retry_after_s, policy.max_delay_s)
		delay = policy.base_delay_s * (2 ** attempt) + self._jitter()
		return min(delay, policy.max_delay_s)

	async def execute_with_retry(
		self,
		operation: Operation[T],
		request_id: Optional[str] = None,
		*,
		context: Optional[Mapping[str, Any]] = None,
	) -> T:
		request_key = request_id or uuid.uuid4().hex
		while True:
			try:
				result = await operation()
			except asyncio.CancelledError:
				raise
			except Exception as exc:
				classification = classify(exc, context)
				self._record_error(classification)
				policy = self.policy_for(classification.category)
				attempt = self.attempt_count(request_key)
				technical = policies.sanitize_for_logging(str(exc))
				if attempt < policy.max_retries:
					delay = self.compute_delay(classification, attempt)
					self._attempts[request_key] = RetryAttempt(count=attempt + 1, last_attempt_at=self._clock())
					self._stats["retries_performed"] += 1
					logger.info(
						"Retrying %s after %.2fs (attempt %d/%d, category=%s): %s",
						request_key,
						delay,
						attempt + 1,
						policy.max_retries,
						classification.category,
						technical,
					)
					await self._sleep(delay)
					continue
				self._attempts.pop(request_key, None)
				logger.warning(
					"Operation %s failed terminally (category=%s, attempts=%d, context=%s): %s",
					request_key,
					classification.category,
					attempt + 1,
					policies.sanitize_context(dict(context or {})),
					technical,
				)
				raise ResilienceError(
					classification=classification,
					user_message=to_user_message(classification),
					technical_message=technical,
					attempts=attempt + 1,
					max_retries=policy.max_retries,
					should_retry=policy.max_retries > 0,
					request_id=request_id,
				) from exc
			else:
				if self._attempts.pop(request_key, None) is not None:
					self._stats["successful_retries"] += 1
				return result

	def purge_stale(self) -> int:
		cutoff = self._clock() - self._record_max_age_s
		stale = [key for key, record in self._attempts.items() if record.last_attempt_at < cutoff]
		for key in stale:
			del self._attempts[key]
		if stale:
			logger.debug("Purged %d stale retry records", len(stale))
		return len(stale)

	def stats(self) -> Dict[str, object]:
		retries = self._stats["retries_performed"]
		successful = self._stats["successful_retries"]
		return {
			"total_errors": self._stats["total_errors"],
			"errors_by_category": dict(self._stats["errors_by_category"]),
			"retries_performed": retries,
			"successful_retries": successful,
			"retry_success_rate": f"{(successful / retries * 100):.2f}%" if retries else "0%",
			"active_retry_records": len(self._attempts),
		}

	def reset_stats(self) -> None:
		self._stats = _new_stats()
		self._attempts.clear()

	def _record_error(self, classification: ErrorClassification) -> None:
		self._stats["total_errors"] += 1
		by_category = self._stats["errors_by_category"]
		by_category[classification.category] = by_category.get(classification.category, 0) + 1


def _new_stats() -> Dict[str, Any]:
	return {
		"total_errors": 0,
		"errors_by_category": {category: 0 for category in ERROR_CATEGORIES},
		"retries_performed": 0,
		"successful_retries": 0,
	}
