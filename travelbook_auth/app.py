from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from travelbook_auth.api.proxy import router
from travelbook_auth.api.schemas import CommandResponse
from travelbook_auth.config import Settings
from travelbook_auth.logging import get_logger, set_correlation_id
from travelbook_auth.service.errors import ServiceError

logger = get_logger(__name__)

__version__ = "0.1.0"

_CORS_METHODS = "POST, OPTIONS"
_CORS_HEADERS = "Content-Type, X-Internal-API-Key, X-Request-ID"


def _envelope(status_code: int, message: str) -> JSONResponse:
    body = CommandResponse(success=False, message=message)
    return JSONResponse(status_code=status_code, content=body.to_content())


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _envelope(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.info("request_validation_failed", path=request.url.path)
        return _envelope(400, "Invalid request format")

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
        return _envelope(exc.status_code, message)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the store proxy application.

    ``transport`` replaces the upstream HTTP transport, which lets tests
    answer for the provider with ``httpx.MockTransport``.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "proxy_started",
            upstash_configured=bool(settings.upstash_rest_url and settings.upstash_rest_token),
            origin_allowlist=len(settings.origin_allowlist),
        )
        yield
        client = getattr(app.state, "http_client", None)
        if client is not None:
            await client.aclose()
            app.state.http_client = None
        logger.info("proxy_stopped")

    app = FastAPI(title="Travelbook Store Proxy", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.upstream_transport = transport
    app.state.http_client = None

    @app.middleware("http")
    async def enforce_origin(request: Request, call_next):
        origin = request.headers.get("Origin") or ""
        allowlist = settings.origin_allowlist
        if allowlist and origin and origin not in allowlist:
            logger.warning("proxy_forbidden_origin", origin=origin, path=request.url.path)
            return _envelope(403, "Forbidden origin")
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Methods"] = _CORS_METHODS
        response.headers["Access-Control-Allow-Headers"] = _CORS_HEADERS
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/healthz")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "upstash_configured": bool(settings.upstash_rest_url and settings.upstash_rest_token),
        }

    return app
