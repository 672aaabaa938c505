from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Request


def now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _request_id(request: Optional[Request]) -> Optional[str]:
	if request is None:
		return None
	return getattr(request.state, "request_id", None)


def success_response(
	*,
	request: Optional[Request] = None,
	result: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
	payload: Dict[str, Any] = {
		"ok": True,
		"generated_at": now_iso(),
	}
	request_id = _request_id(request)
	if request_id:
		payload["request_id"] = request_id
	if result is not None:
		payload["result"] = result
	return payload


def error_response(
	*,
	code: str,
	message: str,
	request: Optional[Request] = None,
	category: str = "unknown",
	should_retry: bool = False,
	retry_delay_ms: Optional[int] = None,
	evidence: Optional[List[str]] = None,
	extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
	payload: Dict[str, Any] = {
		"ok": False,
		"generated_at": now_iso(),
		"error": message,
		"errorCategory": category,
		"shouldRetry": should_retry,
		"code": code,
		"evidence": evidence or [],
	}
	if retry_delay_ms is not None:
		payload["retryDelayMs"] = retry_delay_ms
	if extra:
		payload.update(extra)
	request_id = _request_id(request)
	if request_id:
		payload["request_id"] = request_id
	return payload
