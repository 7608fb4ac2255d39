"""
Redis-backed key-value store for the proxy.
"""

from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from shared.logging import get_logger
from shared.errors import AccessLayerException, InternalError, NotFoundError
from shared.metrics import MetricsCollector


class RedisStore:
    """String-keyed storage on a shared Redis client.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(
        self,
        client: redis.Redis,
        metrics: Optional[MetricsCollector] = None,
        max_transaction_attempts: int = 16,
    ):
        self.redis = client
        self.metrics = metrics
        self.max_transaction_attempts = max_transaction_attempts
        self.logger = get_logger("proxy.store.redis")

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisStore":
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30
        )
        return cls(client, **kwargs)

    async def start(self):
        """Verify the connection."""
        try:
            await self.redis.ping()
            self.logger.info("Redis store started")
        except Exception as e:
            self.logger.error("Failed to start Redis store", error=str(e))
            raise AccessLayerException("REDIS_START_FAILED", str(e))

    async def stop(self):
        """Close the client."""
        await self.redis.aclose()
        self.logger.info("Redis store stopped")

    async def get(self, key: str) -> str:
        value = await self.redis.get(key)
        if value is None:
            raise NotFoundError(f"Key not found: {key}", details={"key": key})
        return value

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(key, value)

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def delete(self, key: str) -> bool:
        return bool(await self.redis.delete(key))

    async def transact(self, key: str, mutate: Callable[[Optional[str]], str]) -> str:
        """Atomically replace ``key`` with ``mutate(current)``.

        ``current`` is None when the key is absent. The key is WATCHed between
        the read and the write; if another client changes it first the whole
        read-modify-write runs again. Anything ``mutate`` raises propagates and
        nothing is written.
        """
        for attempt in range(1, self.max_transaction_attempts + 1):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    new_value = mutate(current)
                    pipe.multi()
                    pipe.set(key, new_value)
                    await pipe.execute()
                    return new_value
                except WatchError:
                    self.logger.info("Concurrent write detected, retrying", key=key, attempt=attempt)
                    if self.metrics:
                        self.metrics.increment_counter("balance_update_conflicts_total")

        raise InternalError(
            "Balance update contention",
            details={"key": key, "attempts": self.max_transaction_attempts}
        )

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False
