"""
Idempotency Store backed by Redis.

`put_if_absent` is a single `SET key value NX EX ttl` round trip, so two
concurrent callers with the same key get exactly one winner.
"""

import logging

from redis.exceptions import RedisError

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import TransientDependencyError
from fleetwatch.app.core.reliability import bounded

logger = logging.getLogger("fleetwatch.idempotency")


class IdempotencyStore:
    """Key/TTL existence set with atomic insert-if-absent."""

    def __init__(self, redis, prefix: str = None, timeout: float = None):
        self.redis = redis
        self.prefix = prefix if prefix is not None else settings.idempotency_key_prefix
        self.timeout = timeout if timeout is not None else settings.dependency_timeout_seconds

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def put_if_absent(self, key: str, ttl_seconds: int) -> bool:
        """
        Insert `key` with a TTL unless it already exists.

        Returns:
            True iff this call performed the insert
        """
        try:
            created = await bounded(
                self.redis.set(self._key(key), "1", nx=True, ex=ttl_seconds),
                self.timeout,
                "idempotency-store",
            )
        except RedisError as e:
            raise TransientDependencyError("idempotency-store", str(e))
        return bool(created)

    async def exists(self, key: str) -> bool:
        try:
            found = await bounded(self.redis.exists(self._key(key)), self.timeout, "idempotency-store")
        except RedisError as e:
            raise TransientDependencyError("idempotency-store", str(e))
        return found > 0

    async def release(self, key: str) -> None:
        """
        Forget a key so the producer's retry is accepted again.

        Best effort: failures are logged, the key then simply expires.
        """
        try:
            await bounded(self.redis.delete(self._key(key)), self.timeout, "idempotency-store")
        except (RedisError, TransientDependencyError) as e:
            logger.warning("Could not release idempotency key %s: %s", key, e)
