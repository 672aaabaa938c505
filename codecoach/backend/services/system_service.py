from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict

from codecoach.backend.core.errors import InvalidPayload
from codecoach.backend.core.types import RoutingMetadata
from codecoach.backend.schemas import InboundMessage

if TYPE_CHECKING:
	from codecoach.backend.gateway import Gateway


def security_stats(gateway: "Gateway") -> Dict[str, Any]:
	blocked = gateway.router.blocked_counts()
	return {
		"blocked_total": sum(blocked["by_category"].values()),
		"blocked_by_category": blocked["by_category"],
		"blocked_by_reason": blocked["by_reason"],
		"allowed_origins": list(gateway.config.allowed_origins),
	}


async def handle_security(gateway: "Gateway", message: InboundMessage, routing: RoutingMetadata) -> Dict[str, Any]:
	if message.type != "securityStatus":
		raise InvalidPayload(f"Unknown security request: {message.type}")
	return {
		"success": True,
		"securityStats": security_stats(gateway),
		"requestId": message.request_id,
	}


async def handle(gateway: "Gateway", message: InboundMessage, routing: RoutingMetadata) -> Dict[str, Any]:
	if message.type == "ping":
		return {"status": "ok", "timestamp": time.time(), "requestId": message.request_id}
	if message.type == "getStats":
		return {"stats": gateway.stats(), "requestId": message.request_id}
	raise InvalidPayload(f"Unknown system request: {message.type}")
