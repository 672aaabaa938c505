from __future__ import annotations

from typing import Dict, List, Optional

from codecoach.backend.core.types import ErrorClassification, RoutingCategory


class RoutingError(Exception):
	"""Terminal failure raised by the router before a handler runs."""

	code = "routing_error"
	category: RoutingCategory = "validation"
	status_code = 400

	def __init__(self, message: str, *, evidence: Optional[List[str]] = None):
		super().__init__(message)
		self.message = message
		self.evidence = evidence or []

	@property
	def retry_delay_ms(self) -> Optional[int]:
		return None

	def as_payload(self) -> Dict[str, object]:
		payload: Dict[str, object] = {
			"error": self.message,
			"errorCategory": self.category,
			"shouldRetry": False,
			"code": self.code,
		}
		if self.retry_delay_ms is not None:
			payload["retryDelayMs"] = self.retry_delay_ms
		if self.evidence:
			payload["evidence"] = list(self.evidence)
		return payload


class MalformedRequest(RoutingError):
	code = "malformed_request"


class UnknownOrigin(RoutingError):
	code = "unknown_origin"
	status_code = 403


class InvalidPayload(RoutingError):
	code = "invalid_payload"


class UnknownRoute(RoutingError):
	code = "unknown_route"
	status_code = 404


class SecurityBlocked(RoutingError):
	code = "security_blocked"
	category: RoutingCategory = "security"
	status_code = 403


class InternalRoutingError(RoutingError):
	code = "internal_routing_error"
	category: RoutingCategory = "unknown"
	status_code = 500


class RateLimited(RoutingError):
	code = "rate_limited"
	category: RoutingCategory = "rate_limited"
	status_code = 429

	def __init__(self, message: str, *, retry_after_seconds: int):
		super().__init__(message)
		self.retry_after_seconds = retry_after_seconds

	@property
	def retry_delay_ms(self) -> Optional[int]:
		return self.retry_after_seconds * 1000


class ResilienceError(Exception):
	"""Terminal failure of an operation wrapped by the resilience executor."""

	def __init__(
		self,
		*,
		classification: ErrorClassification,
		user_message: str,
		technical_message: str,
		attempts: int,
		max_retries: int,
		should_retry: bool,
		request_id: Optional[str] = None,
	):
		super().__init__(user_message)
		self.classification = classification
		self.user_message = user_message
		self.technical_message = technical_message
		self.attempts = attempts
		self.max_retries = max_retries
		self.should_retry = should_retry
		self.request_id = request_id

	@property
	def category(self) -> str:
		return self.classification.category

	@property
	def status_code(self) -> int:
		if self.category in {"authentication", "validation"}:
			return 400
		if self.category in {"rate_limited", "quota_exceeded"}:
			return 429
		if self.category == "configuration":
			return 503
		if self.category == "timeout":
			return 504
		return 502

	@property
	def retry_delay_ms(self) -> Optional[int]:
		retry_after = self.classification.retry_after_s
		if retry_after is None or not self.should_retry:
			return None
		return int(retry_after * 1000)

	def as_payload(self) -> Dict[str, object]:
		payload: Dict[str, object] = {
			"error": self.user_message,
			"errorCategory": self.category,
			"shouldRetry": self.should_retry,
			"code": f"provider_{self.category}",
			"retryAttempt": self.attempts,
			"maxRetries": self.max_retries,
		}
		if self.classification.http_status is not None:
			payload["httpStatus"] = self.classification.http_status
		if self.retry_delay_ms is not None:
			payload["retryDelayMs"] = self.retry_delay_ms
		if self.request_id:
			payload["requestId"] = self.request_id
		return payload
