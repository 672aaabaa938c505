from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from codecoach.backend import constants
from codecoach.backend.adapters import provider_adapter, sqlite_adapter
from codecoach.backend.core.types import RoutingMetadata
from codecoach.backend.schemas import ChatMessage, ProblemMessage
from codecoach.backend.services import config_service, prompt_service

if TYPE_CHECKING:
	from codecoach.backend.gateway import Gateway


logger = logging.getLogger(__name__)

_WARNING_LEVELS = ((90.0, "red"), (70.0, "yellow"), (50.0, "green"))


def token_warning(used: int, budget: Optional[int]) -> Optional[Dict[str, Any]]:
	if not budget or budget <= 0:
		return None
	percent = used / budget * 100
	if percent >= 100:
		logger.warning("Token budget exceeded: %.1f%% used", percent)
		return None
	for threshold, level in _WARNING_LEVELS:
		if percent >= threshold:
			return {"level": level, "percent": round(percent, 1), "used": used, "total": budget}
	return None


def track_output_tokens(output_tokens: int, budget: Optional[int], db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
	if output_tokens <= 0:
		return None
	usage = sqlite_adapter.add_output_tokens(output_tokens, db_path)
	warning = token_warning(usage["output_tokens"], budget)
	if warning is not None:
		sqlite_adapter.set_token_warning(warning, db_path)
	return warning


async def handle(gateway: "Gateway", message: ProblemMessage, routing: RoutingMetadata) -> Dict[str, Any]:
	request_type = message.type
	db_path = gateway.config.db_path

	feature = constants.AUTO_TRIGGER_FEATURES.get(request_type)
	if message.is_auto_triggered and feature and not config_service.feature_enabled(feature, db_path):
		logger.info("Feature %s is disabled; skipping %s", feature, request_type)
		return {
			"skipped": True,
			"message": f"{request_type} is currently disabled in settings",
			"requestId": message.request_id,
		}

	stored = config_service.stored_provider_config(db_path)
	context = message.problem_context()
	title = context["problem_title"]

	hint_level = 1
	hint_context = None
	if request_type == "hint":
		hint_level = gateway.hints.advance(routing.caller_id, title, context)
		hint_context = gateway.hints.get_context(routing.caller_id, title)

	prompt = prompt_service.build_prompt(
		request_type,
		context,
		message=message.message if isinstance(message, ChatMessage) else None,
		hint_level=hint_level,
		hint_context=hint_context,
	)

	async def call_provider() -> provider_adapter.ProviderResponse:
		provider = provider_adapter.resolve_provider(stored, gateway.config)
		return await provider.complete(prompt, request_type)

	response = await gateway.executor.execute_with_retry(
		call_provider,
		message.request_id,
		context={
			"type": request_type,
			"provider": stored.provider if stored else gateway.config.provider_mode,
			"problem_title": title,
		},
	)

	warning = track_output_tokens(
		response.output_tokens,
		stored.token_total_budget if stored else None,
		db_path,
	)
	filtered = prompt_service.filter_response(response.content)
	content = prompt_service.sanitize_content(filtered["content"])

	if request_type == "chatMessage":
		result: Dict[str, Any] = {
			"success": True,
			"reply": content,
			"provider": response.provider,
			"requestId": message.request_id,
		}
	else:
		response_key = "suggestion" if request_type == "completion" else request_type
		result = {
			response_key: content,
			"type": request_type,
			"provider": response.provider,
			"filtered": filtered["filtered"],
			"filterReason": filtered["reason"],
			"requestId": message.request_id,
		}
	if request_type == "hint":
		gateway.hints.record_hint(routing.caller_id, title, hint_level, content, context)
		result["hintLevel"] = hint_level
		result["maxLevel"] = gateway.hints.max_level
	if warning is not None:
		result["tokenWarning"] = warning
	return result
