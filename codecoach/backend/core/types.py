from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set


ErrorCategory = Literal[
	"network",
	"authentication",
	"rate_limited",
	"quota_exceeded",
	"timeout",
	"validation",
	"upstream_server_error",
	"configuration",
	"unknown",
]
RoutingCategory = Literal["validation", "security", "rate_limited", "unknown"]
RateScope = Literal["tab_limit", "global_limit"]
HintType = Literal["conceptual", "structural", "implementation", "optimization", "general"]

ERROR_CATEGORIES: tuple[str, ...] = (
	"network",
	"authentication",
	"rate_limited",
	"quota_exceeded",
	"timeout",
	"validation",
	"upstream_server_error",
	"configuration",
	"unknown",
)


@dataclass(frozen=True)
class RateLimit:
	requests: int
	window_s: float = 60.0


@dataclass
class RateDecision:
	allowed: bool
	retry_after_seconds: int = 0
	scope: Optional[RateScope] = None

	def as_dict(self) -> Dict[str, object]:
		payload: Dict[str, object] = {"allowed": self.allowed}
		if not self.allowed:
			payload["retry_after_seconds"] = self.retry_after_seconds
			payload["reason"] = self.scope
		return payload


@dataclass
class MiddlewareVerdict:
	blocked: bool = False
	reason: str = ""
	category: RoutingCategory = "security"
	retry_after_seconds: Optional[int] = None

	@classmethod
	def passed(cls) -> "MiddlewareVerdict":
		return cls(blocked=False)

	@classmethod
	def block(
		cls,
		reason: str,
		*,
		category: RoutingCategory = "security",
		retry_after_seconds: Optional[int] = None,
	) -> "MiddlewareVerdict":
		return cls(
			blocked=True,
			reason=reason,
			category=category,
			retry_after_seconds=retry_after_seconds,
		)


@dataclass(frozen=True)
class CallerInfo:
	caller_id: str
	origin: Optional[str] = None


Middleware = Callable[[Any, CallerInfo], MiddlewareVerdict]


@dataclass
class Route:
	message_type: str
	handler: str
	middleware: List[Middleware] = field(default_factory=list)
	rate_limit: Optional[RateLimit] = None

	def as_dict(self) -> Dict[str, object]:
		return {
			"type": self.message_type,
			"handler": self.handler,
			"middleware_count": len(self.middleware),
			"rate_limit": (
				{"requests": self.rate_limit.requests, "window_s": self.rate_limit.window_s}
				if self.rate_limit
				else None
			),
		}


@dataclass(frozen=True)
class RoutingMetadata:
	handler: str
	dispatched_at: float
	caller_id: str
	origin: Optional[str] = None

	def as_dict(self) -> Dict[str, object]:
		return {
			"handler": self.handler,
			"dispatched_at": self.dispatched_at,
			"caller_id": self.caller_id,
			"origin": self.origin,
		}


Handler = Callable[[Any, RoutingMetadata], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class RetryPolicy:
	max_retries: int
	base_delay_s: float
	max_delay_s: float


@dataclass(frozen=True)
class ErrorClassification:
	category: ErrorCategory
	http_status: Optional[int] = None
	retry_after_s: Optional[float] = None


@dataclass
class RetryAttempt:
	count: int
	last_attempt_at: float


@dataclass
class HintEntry:
	level: int
	content: str
	timestamp: float
	hint_type: HintType
	code_length: int = 0
	has_function: bool = False
	has_loop: bool = False
	has_conditional: bool = False
	code_complexity: int = 0

	def as_dict(self) -> Dict[str, object]:
		return {
			"level": self.level,
			"content": self.content,
			"type": self.hint_type,
			"timestamp": self.timestamp,
		}


@dataclass
class CodeSnapshot:
	code: str
	timestamp: float
	hint_level: int

	def as_dict(self) -> Dict[str, object]:
		return {"code": self.code, "timestamp": self.timestamp, "hint_level": self.hint_level}


@dataclass
class HintSession:
	problem_title: str
	initial_code: str
	language: str
	problem_description: str
	created_at: float
	last_updated: float
	current_level: int = 0
	hints: List[HintEntry] = field(default_factory=list)
	concepts: Set[str] = field(default_factory=set)
	code_evolution: List[CodeSnapshot] = field(default_factory=list)
	progress_score: float = 0.0
