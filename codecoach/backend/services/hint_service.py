from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from codecoach.backend.core.errors import InvalidPayload
from codecoach.backend.core.types import RoutingMetadata
from codecoach.backend.schemas import InboundMessage, ResetHintsMessage

if TYPE_CHECKING:
	from codecoach.backend.gateway import Gateway


async def handle(gateway: "Gateway", message: InboundMessage, routing: RoutingMetadata) -> Dict[str, Any]:
	if not isinstance(message, ResetHintsMessage):
		raise InvalidPayload(f"Unknown hint request: {message.type}")
	existed = gateway.hints.reset(routing.caller_id, message.problem_title)
	return {
		"success": True,
		"reset": existed,
		"problemTitle": message.problem_title,
		"requestId": message.request_id,
	}
