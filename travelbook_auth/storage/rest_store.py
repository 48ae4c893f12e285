"""Key-value stores reached over HTTP.

``UpstashKeyValueStore`` talks to the hosted provider's REST API directly and
needs the provider token. ``ProxyKeyValueStore`` talks to the stateless proxy
in :mod:`travelbook_auth.api.proxy`, which holds the token server-side and
answers with a ``{success, result|message}`` envelope.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from travelbook_auth.logging import get_logger
from travelbook_auth.storage.errors import StoreUnavailable
from travelbook_auth.storage.kv import normalize_hash

logger = get_logger(__name__)


class _HttpKeyValueStore:
    def __init__(
        self,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _command(self, command: str, *args: str) -> Any:
        raise NotImplementedError

    async def _post(self, url: str, *, command: str, **kwargs) -> Any:
        try:
            response = await self._client.post(url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "store_http_error",
                command=command,
                status_code=exc.response.status_code,
            )
            raise StoreUnavailable(
                f"store {command} failed with status {exc.response.status_code}",
                {"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("store_request_failed", command=command, error=str(exc))
            raise StoreUnavailable(f"store {command} failed", {"error": str(exc)}) from exc
        except ValueError as exc:
            logger.warning("store_reply_not_json", command=command, error=str(exc))
            raise StoreUnavailable(f"store {command} returned invalid JSON") from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._command("get", key)

    async def set(self, key: str, value: str) -> None:
        await self._command("set", key, value)

    async def delete(self, key: str) -> int:
        return int(await self._command("del", key) or 0)

    async def hset(self, key: str, field: str, value: str) -> int:
        return int(await self._command("hset", key, field, value) or 0)

    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self._command("hget", key, field)

    async def hgetall(self, key: str) -> Dict[str, str]:
        return normalize_hash(await self._command("hgetall", key))

    async def hdel(self, key: str, field: str) -> int:
        return int(await self._command("hdel", key, field) or 0)

    async def sadd(self, key: str, member: str) -> int:
        return int(await self._command("sadd", key, member) or 0)

    async def smembers(self, key: str) -> List[str]:
        return sorted(await self._command("smembers", key) or [])

    async def srem(self, key: str, member: str) -> int:
        return int(await self._command("srem", key, member) or 0)

    async def close(self) -> None:
        await self._client.aclose()


class UpstashKeyValueStore(_HttpKeyValueStore):
    """Direct client for the Upstash Redis REST API."""

    def __init__(
        self,
        rest_url: str,
        token: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.rest_url = rest_url.rstrip("/")
        self._token = token

    async def _command(self, command: str, *args: str) -> Any:
        payload = await self._post(
            self.rest_url,
            command=command,
            json=[command.upper(), *args],
            headers={"Authorization": f"Bearer {self._token}"},
        )
        if not isinstance(payload, dict):
            raise StoreUnavailable(f"store {command} returned an unexpected reply")
        if payload.get("error"):
            logger.warning("store_command_error", command=command, error=payload["error"])
            raise StoreUnavailable(str(payload["error"]), {"command": command})
        return payload.get("result")


class ProxyKeyValueStore(_HttpKeyValueStore):
    """Client for the credential-hiding store proxy."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key

    async def _command(self, command: str, *args: str) -> Any:
        headers = {"X-Internal-API-Key": self._api_key} if self._api_key else {}
        payload = await self._post(
            f"{self.base_url}/api/upstash/{command}",
            command=command,
            json={"command": command, "args": list(args)},
            headers=headers,
        )
        if not isinstance(payload, dict) or not payload.get("success"):
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.warning("store_proxy_rejected", command=command, message=message)
            raise StoreUnavailable(message or f"store {command} failed", {"command": command})
        return payload.get("result")
