from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from codecoach.backend import constants


logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
	"""Stamps every request with a request id and the header-level caller id.

	A ``callerIdentity`` field in the message body still wins; the router only
	falls back to ``request.state.caller_id``.
	"""

	async def dispatch(self, request: Request, call_next) -> Response:
		request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
		caller_id = request.headers.get(CALLER_HEADER, "").strip() or constants.DEFAULT_CALLER_ID
		request.state.request_id = request_id
		request.state.caller_id = caller_id

		started = time.perf_counter()
		response = await call_next(request)
		elapsed_ms = (time.perf_counter() - started) * 1000

		response.headers["X-Request-ID"] = request_id
		response.headers["X-Process-Time"] = f"{elapsed_ms / 1000:.6f}"
		logger.debug(
			"%s %s caller=%s -> %d in %.1fms",
			request.method,
			request.url.path,
			caller_id,
			response.status_code,
			elapsed_ms,
		)
		return response
