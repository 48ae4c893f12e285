from __future__ import annotations

from typing import Dict, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from travelbook_auth.logging import get_logger, mask_url_password
from travelbook_auth.storage.errors import StoreUnavailable

logger = get_logger(__name__)


class RedisKeyValueStore:
    """Key-value store backed by a directly reachable Redis server."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before wiring the store into the runtime."""
        # Short-lived sync client so the async pool is not bound to a throwaway loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        except RedisError as exc:
            raise StoreUnavailable("redis ping failed", {"error": str(exc)}) from exc
        finally:
            sync_client.close()

    async def _run(self, command: str, coro):
        try:
            return await coro
        except RedisError as exc:
            logger.warning(
                "redis_command_failed",
                command=command,
                redis_url=mask_url_password(self.redis_url),
                error=str(exc),
            )
            raise StoreUnavailable(f"redis {command} failed", {"error": str(exc)}) from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._run("get", self.client.get(key))

    async def set(self, key: str, value: str) -> None:
        await self._run("set", self.client.set(key, value))

    async def delete(self, key: str) -> int:
        return int(await self._run("del", self.client.delete(key)))

    async def hset(self, key: str, field: str, value: str) -> int:
        return int(await self._run("hset", self.client.hset(key, field, value)))

    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self._run("hget", self.client.hget(key, field))

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(await self._run("hgetall", self.client.hgetall(key)) or {})

    async def hdel(self, key: str, field: str) -> int:
        return int(await self._run("hdel", self.client.hdel(key, field)))

    async def sadd(self, key: str, member: str) -> int:
        return int(await self._run("sadd", self.client.sadd(key, member)))

    async def smembers(self, key: str) -> List[str]:
        return sorted(await self._run("smembers", self.client.smembers(key)) or [])

    async def srem(self, key: str, member: str) -> int:
        return int(await self._run("srem", self.client.srem(key, member)))

    async def close(self) -> None:
        """Close Redis connection pool."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
