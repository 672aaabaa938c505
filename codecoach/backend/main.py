from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from codecoach.backend import constants
from codecoach.backend.config import GatewayConfig, load_config
from codecoach.backend.gateway import Gateway
from codecoach.backend.middleware import RequestContextMiddleware
from codecoach.backend.response import error_response
from codecoach.backend.routers import health, messages


logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = {"error", "errorCategory", "shouldRetry", "code", "retryDelayMs", "evidence"}


@asynccontextmanager
async def _lifespan(app: FastAPI):
	gateway: Gateway = app.state.gateway
	gateway.start()
	try:
		yield
	finally:
		await gateway.stop()


def create_app(config: Optional[GatewayConfig] = None) -> FastAPI:
	config = config or load_config()
	_configure_logging(config.log_level)
	app = FastAPI(
		title=constants.APP_NAME,
		version=constants.APP_VERSION,
		lifespan=_lifespan,
	)
	app.state.gateway = Gateway(config)
	_register_middleware(app)
	_register_handlers(app)
	_register_routers(app)
	return app


def _configure_logging(level: str) -> None:
	logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	logging.getLogger("codecoach").setLevel(getattr(logging, level, logging.INFO))


def _register_middleware(app: FastAPI) -> None:
	app.add_middleware(RequestContextMiddleware)
	app.add_middleware(GZipMiddleware, minimum_size=1024)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=constants.DEFAULT_CORS_ALLOW_ORIGINS,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.add_middleware(
		TrustedHostMiddleware,
		allowed_hosts=constants.DEFAULT_TRUSTED_HOSTS,
	)


def _register_routers(app: FastAPI) -> None:
	app.include_router(messages.router)
	app.include_router(health.router)


def _register_handlers(app: FastAPI) -> None:
	@app.exception_handler(HTTPException)
	async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
		if isinstance(exc.detail, dict) and isinstance(exc.detail.get("error"), str):
			detail = exc.detail
			payload = error_response(
				code=str(detail.get("code") or f"http_{exc.status_code}"),
				message=detail["error"],
				request=request,
				category=str(detail.get("errorCategory") or "unknown"),
				should_retry=bool(detail.get("shouldRetry", False)),
				retry_delay_ms=detail.get("retryDelayMs"),
				evidence=[str(item) for item in detail.get("evidence") or []],
				extra={key: value for key, value in detail.items() if key not in _ENVELOPE_KEYS},
			)
		else:
			payload = error_response(
				code=f"http_{exc.status_code}",
				message=_exc_message(exc.detail),
				request=request,
				category="validation" if exc.status_code < 500 else "unknown",
			)
		return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)

	@app.exception_handler(StarletteHTTPException)
	async def handle_starlette_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
		payload = error_response(
			code=f"http_{exc.status_code}",
			message=_exc_message(exc.detail),
			request=request,
			category="validation" if exc.status_code < 500 else "unknown",
		)
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(RequestValidationError)
	async def handle_request_validation_error(
		request: Request,
		exc: RequestValidationError,
	) -> JSONResponse:
		evidence = []
		for issue in exc.errors():
			loc = ".".join(str(part) for part in issue.get("loc", []))
			msg = issue.get("msg", "Invalid request.")
			evidence.append(f"{loc}: {msg}" if loc else msg)
		payload = error_response(
			code="validation_error",
			message="Request validation failed.",
			request=request,
			category="validation",
			evidence=evidence,
		)
		return JSONResponse(status_code=422, content=payload)

	@app.exception_handler(Exception)
	async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
		logger.exception("Unhandled error on %s", request.url.path)
		payload = error_response(
			code="internal_error",
			message="Internal server error.",
			request=request,
		)
		return JSONResponse(status_code=500, content=payload)


def _exc_message(detail: Any) -> str:
	if isinstance(detail, str):
		return detail
	if detail is None:
		return "Request failed."
	return str(detail)


app = create_app()
