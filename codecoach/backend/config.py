from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from codecoach.backend import constants
from codecoach.backend.core.rate_limiter import default_limits
from codecoach.backend.core.resilience import default_policies
from codecoach.backend.core.types import ERROR_CATEGORIES, RateLimit, RetryPolicy
from codecoach.backend.schemas import RateLimitOverride, RetryPolicyOverride


logger = logging.getLogger(__name__)

_DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
_DEFAULT_OPENAI_TIMEOUT_S = 30.0

M = TypeVar("M", bound=BaseModel)


@dataclass
class GatewayConfig:
	rate_limits: Dict[str, RateLimit] = field(default_factory=default_limits)
	retry_policies: Dict[str, RetryPolicy] = field(default_factory=default_policies)
	allowed_origins: Tuple[str, ...] = constants.DEFAULT_ALLOWED_ORIGINS
	hint_session_ttl_s: int = constants.HINT_SESSION_TTL_S
	hint_max_sessions: int = constants.HINT_MAX_SESSIONS_PER_CALLER
	sweep_interval_s: int = constants.SWEEP_INTERVAL_S
	db_path: str = constants.DEFAULT_DB_PATH
	log_level: str = "INFO"
	provider_mode: str = "auto"
	openai_api_key: Optional[str] = None
	openai_model: str = _DEFAULT_OPENAI_MODEL
	openai_timeout_s: float = _DEFAULT_OPENAI_TIMEOUT_S


def _int_env(name: str, default: int, minimum: int = 1) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError:
		return default
	return value if value >= minimum else default


def _float_env(name: str, default: float) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError:
		return default
	return value if value > 0 else default


def _json_table(name: str, model: Type[M]) -> Dict[str, M]:
	raw = os.getenv(name, "").strip()
	if not raw:
		return {}
	try:
		decoded = json.loads(raw)
	except json.JSONDecodeError:
		logger.warning("%s is not valid JSON; using defaults", name)
		return {}
	if not isinstance(decoded, dict):
		logger.warning("%s must be a JSON object; using defaults", name)
		return {}
	table: Dict[str, M] = {}
	for key, value in decoded.items():
		try:
			table[str(key)] = model.model_validate(value)
		except ValidationError as exc:
			logger.warning("Ignoring %s entry %s: %s", name, key, exc.errors()[0].get("msg", "invalid"))
	return table


def rate_limits_from_env() -> Dict[str, RateLimit]:
	limits = default_limits()
	for message_type, override in _json_table("CODECOACH_RATE_LIMITS", RateLimitOverride).items():
		limits[message_type] = RateLimit(requests=override.requests, window_s=override.window_s)
	return limits


def retry_policies_from_env() -> Dict[str, RetryPolicy]:
	policies = default_policies()
	for category, override in _json_table("CODECOACH_RETRY_POLICIES", RetryPolicyOverride).items():
		if category not in ERROR_CATEGORIES:
			logger.warning("Ignoring retry policy for unknown category %s", category)
			continue
		policies[category] = RetryPolicy(
			max_retries=override.max_retries,
			base_delay_s=override.base_delay_s,
			max_delay_s=override.max_delay_s,
		)
	return policies


def allowed_origins_from_env() -> Tuple[str, ...]:
	raw = os.getenv("CODECOACH_ALLOWED_ORIGINS", "").strip()
	origins = tuple(item.strip() for item in raw.split(",") if item.strip())
	return origins or constants.DEFAULT_ALLOWED_ORIGINS


def load_config() -> GatewayConfig:
	api_key = os.getenv("OPENAI_API_KEY", "").strip()
	return GatewayConfig(
		rate_limits=rate_limits_from_env(),
		retry_policies=retry_policies_from_env(),
		allowed_origins=allowed_origins_from_env(),
		hint_session_ttl_s=_int_env("CODECOACH_HINT_SESSION_TTL_S", constants.HINT_SESSION_TTL_S, minimum=60),
		hint_max_sessions=_int_env("CODECOACH_HINT_MAX_SESSIONS", constants.HINT_MAX_SESSIONS_PER_CALLER),
		sweep_interval_s=_int_env("CODECOACH_SWEEP_INTERVAL_S", constants.SWEEP_INTERVAL_S, minimum=1),
		db_path=os.getenv("CODECOACH_DB_PATH", "").strip() or constants.DEFAULT_DB_PATH,
		log_level=os.getenv("CODECOACH_LOG_LEVEL", "INFO").strip().upper() or "INFO",
		provider_mode=os.getenv("ASSISTANT_PROVIDER_MODE", "auto").strip().lower() or "auto",
		openai_api_key=api_key or None,
		openai_model=os.getenv("ASSISTANT_OPENAI_MODEL", _DEFAULT_OPENAI_MODEL).strip() or _DEFAULT_OPENAI_MODEL,
		openai_timeout_s=_float_env("ASSISTANT_OPENAI_TIMEOUT_S", _DEFAULT_OPENAI_TIMEOUT_S),
	)
