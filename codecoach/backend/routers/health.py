from __future__ import annotations

from fastapi import APIRouter, Request

from codecoach.backend.response import success_response
from codecoach.backend.schemas import ApiEnvelope


router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", response_model=ApiEnvelope, response_model_exclude_none=True)
def get_health(request: Request):
	return success_response(
		request=request,
		result=request.app.state.gateway.health(),
	)
