"""Stateless endpoints forwarding store commands to the Upstash REST API.

The browser never sees the provider token: it posts ``{command, args}`` here
and the proxy attaches credentials, forwards the command and answers with
the ``{success, result|message}`` envelope.
"""

from __future__ import annotations

import secrets
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from travelbook_auth.api.schemas import CommandRequest, CommandResponse
from travelbook_auth.config import Settings
from travelbook_auth.logging import get_logger
from travelbook_auth.service.errors import ServiceError
from travelbook_auth.storage.kv import SUPPORTED_COMMANDS

logger = get_logger(__name__)

router = APIRouter(prefix="/api/upstash")


class ProxyError(ServiceError):
    status_code = 500
    error_code = "server_error"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    state = request.app.state
    client: Optional[httpx.AsyncClient] = getattr(state, "http_client", None)
    if client is None:
        client = httpx.AsyncClient(
            timeout=state.settings.store_timeout_seconds,
            transport=getattr(state, "upstream_transport", None),
        )
        state.http_client = client
    return client


async def require_internal_key(
    request: Request, settings: Settings = Depends(get_settings)
) -> None:
    expected = settings.internal_api_key
    if not expected:
        return
    provided = request.headers.get("X-Internal-API-Key") or ""
    if not secrets.compare_digest(provided, expected):
        logger.warning("proxy_unauthorized", path=request.url.path)
        raise ProxyError("Unauthorized", status_code=401, error_code="unauthorized")


async def _parse_command(request: Request, command: str) -> CommandRequest:
    try:
        payload = await request.json()
        body = CommandRequest.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        logger.info("proxy_invalid_request", command=command, error_type=type(exc).__name__)
        raise ProxyError(
            "Invalid request format", status_code=400, error_code="validation_error"
        ) from exc
    if command not in SUPPORTED_COMMANDS or body.command not in SUPPORTED_COMMANDS:
        raise ProxyError(
            f"Unsupported command: {body.command}",
            status_code=400,
            error_code="validation_error",
        )
    if body.command != command:
        raise ProxyError(
            "Command does not match endpoint", status_code=400, error_code="validation_error"
        )
    return body


async def forward_command(
    client: httpx.AsyncClient, settings: Settings, command: str, args: list[str]
) -> Any:
    if not settings.upstash_rest_url or not settings.upstash_rest_token:
        raise ProxyError("Upstash configuration not found")
    try:
        response = await client.post(
            settings.upstash_rest_url.rstrip("/"),
            json=[command.upper(), *args],
            headers={"Authorization": f"Bearer {settings.upstash_rest_token}"},
        )
    except httpx.HTTPError as exc:
        logger.error("upstash_request_failed", command=command, error=str(exc))
        raise ProxyError("Upstash request failed") from exc
    if response.status_code >= 400:
        logger.error("upstash_http_error", command=command, status_code=response.status_code)
        raise ProxyError(f"Upstash API error: {response.status_code}")
    try:
        data = response.json()
    except ValueError as exc:
        raise ProxyError("Upstash returned an invalid response") from exc
    if not isinstance(data, dict):
        raise ProxyError("Upstash returned an invalid response")
    if data.get("error"):
        logger.error("upstash_command_error", command=command, error=data["error"])
        raise ProxyError(str(data["error"]))
    return data.get("result")


@router.post("/{command}", dependencies=[Depends(require_internal_key)])
async def run_command(
    command: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> JSONResponse:
    command = command.lower()
    body = await _parse_command(request, command)
    result = await forward_command(client, settings, body.command, body.args)
    logger.info("proxy_command_forwarded", command=body.command)
    response = CommandResponse(success=True, result=result)
    return JSONResponse(status_code=200, content=response.to_content())
