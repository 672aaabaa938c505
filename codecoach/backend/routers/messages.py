from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request

from codecoach.backend import constants
from codecoach.backend.core import CallerInfo
from codecoach.backend.core.errors import RateLimited, ResilienceError, RoutingError
from codecoach.backend.core.resilience import error_payload
from codecoach.backend.response import success_response
from codecoach.backend.schemas import ApiEnvelope


router = APIRouter(prefix="/api", tags=["messages"])


def _caller_from_request(request: Request, payload: Any) -> CallerInfo:
	body: Dict[str, Any] = payload if isinstance(payload, dict) else {}
	caller_id = body.get("callerIdentity")
	if not isinstance(caller_id, str) or not caller_id.strip():
		caller_id = getattr(request.state, "caller_id", None) or constants.DEFAULT_CALLER_ID
	origin: Optional[str] = body.get("origin")
	if not isinstance(origin, str) or not origin.strip():
		origin = request.headers.get("Origin") or None
	return CallerInfo(caller_id=caller_id.strip(), origin=origin.strip() if origin else None)


def _message_request_id(payload: Any) -> Optional[str]:
	if isinstance(payload, dict) and isinstance(payload.get("requestId"), str):
		return payload["requestId"]
	return None


async def _read_payload(request: Request) -> Any:
	raw = await request.body()
	if not raw:
		return None
	try:
		return json.loads(raw)
	except (UnicodeDecodeError, json.JSONDecodeError):
		return None


@router.post("/messages", response_model=ApiEnvelope, response_model_exclude_none=True)
async def post_message(request: Request):
	payload = await _read_payload(request)
	caller = _caller_from_request(request, payload)
	gateway = request.app.state.gateway
	try:
		result = await gateway.dispatch(payload, caller)
	except RateLimited as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail=exc.as_payload(),
			headers={"Retry-After": str(exc.retry_after_seconds)},
		) from exc
	except ResilienceError as exc:
		raise HTTPException(status_code=exc.status_code, detail=error_payload(exc, _message_request_id(payload))) from exc
	except RoutingError as exc:
		raise HTTPException(status_code=exc.status_code, detail=exc.as_payload()) from exc
	return success_response(request=request, result=result)


@router.delete("/callers/{caller_id}", response_model=ApiEnvelope, response_model_exclude_none=True)
def forget_caller(request: Request, caller_id: str):
	result = request.app.state.gateway.forget_caller(caller_id)
	return success_response(request=request, result=result)
