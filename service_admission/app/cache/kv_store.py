"""
Key-value store backends for the admission cache.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheUnavailableError
from shared.logging import get_logger


class KeyValueStore(ABC):
    """Minimal string key-value interface shared by every gateway instance."""

    async def start(self):
        """Open connections, if any."""

    async def stop(self):
        """Release connections, if any."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store. Every read and write goes straight to Redis."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("admission.cache.redis")
        self.redis: redis.Redis = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        )

    async def start(self):
        """Verify the Redis connection."""
        try:
            await self.redis.ping()
        except RedisError as e:
            self.logger.error("Failed to connect to Redis", error=str(e))
            raise CacheUnavailableError("Failed to connect to Redis", details={"error": str(e)})
        self.logger.info("Redis store started")

    async def stop(self):
        await self.redis.aclose()
        self.logger.info("Redis store stopped")

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis.get(key)
        except RedisError as e:
            self.logger.error("Redis read failed", key=key, error=str(e))
            raise CacheUnavailableError(details={"operation": "get", "key": key, "error": str(e)})

    async def put(self, key: str, value: str) -> None:
        try:
            await self.redis.set(key, value)
        except RedisError as e:
            self.logger.error("Redis write failed", key=key, error=str(e))
            raise CacheUnavailableError(details={"operation": "put", "key": key, "error": str(e)})

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for single-instance runs and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self.data.get(key)

    async def put(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        self.data[key] = value

    async def ping(self) -> bool:
        return True
