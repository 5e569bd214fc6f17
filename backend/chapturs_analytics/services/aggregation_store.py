"""Redis-backed shared aggregation tier for pending view counts.

Every process instance increments the same Redis counters, so they converge
on one pending count per key before the durable flush job persists it. The
tier is optional: without configuration ``enabled`` is False and callers
write straight to the database.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from chapturs_analytics.infra import config
from chapturs_analytics.models.view_key import VIEW_KEY_PREFIX

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCAN_BATCH = 500


class AggregationStoreError(Exception):
    """Redis was unreachable, timed out or rejected a command."""


class AggregationStore:
    """Batch operations against the shared counters in Redis."""

    def __init__(
        self,
        client: Redis | None,
        key_ttl: int = config.VIEW_KEY_TTL_S,
        timeout: float = config.REMOTE_TIMEOUT_S,
    ):
        self._client = client
        self.key_ttl = key_ttl
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def _call(self, op: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise AggregationStoreError(f"Redis {op} failed: {e!r}") from e

    async def batch_increment(self, counts: dict[str, int]) -> dict[str, int]:
        """INCRBY + EXPIRE every key in a single pipelined round trip.

        Commands in a non-transactional pipeline succeed or fail one by one,
        so a per-key error does not fail the batch. Returns the counts whose
        INCRBY was rejected (for example a key holding a non-integer value);
        those were not applied and belong to the caller again. Raises
        AggregationStoreError only when the round trip itself fails.
        """
        entries = [(k, n) for k, n in counts.items() if n > 0]
        if not self.enabled or not entries:
            return {}

        async def _run() -> list[Any]:
            async with self._client.pipeline(transaction=False) as pipe:
                for key, delta in entries:
                    pipe.incrby(key, delta)
                    pipe.expire(key, self.key_ttl)
                return await pipe.execute(raise_on_error=False)

        results = await self._call("batch increment", _run())

        rejected: dict[str, int] = {}
        for i, (key, delta) in enumerate(entries):
            incr_result, expire_result = results[2 * i], results[2 * i + 1]
            if isinstance(incr_result, Exception):
                logger.warning("Redis rejected INCRBY %s by %d: %s", key, delta, incr_result)
                rejected[key] = delta
            elif isinstance(expire_result, Exception):
                # Count applied; only the expiry is missing
                logger.warning("Redis rejected EXPIRE on %s: %s", key, expire_result)

        logger.debug(
            "Pushed %d pending view keys to Redis (%d rejected)",
            len(entries) - len(rejected), len(rejected),
        )
        return rejected

    async def list_pending_keys(self, prefix: str = VIEW_KEY_PREFIX) -> list[str]:
        """All keys under prefix, discovered with SCAN rather than KEYS."""
        if not self.enabled:
            return []

        async def _run() -> list[str]:
            return [
                key async for key in self._client.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH)
            ]

        return await self._call("scan", _run())

    async def read_and_clear(self, keys: list[str]) -> dict[str, int]:
        """Claim pending counts with GETDEL so each value is read exactly once."""
        if not self.enabled or not keys:
            return {}

        async def _run() -> list[Any]:
            async with self._client.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.getdel(key)
                return await pipe.execute()

        values = await self._call("claim", _run())
        claimed: dict[str, int] = {}
        for key, raw in zip(keys, values):
            if raw is None:
                continue  # expired or claimed by another flush
            try:
                count = int(raw)
            except (TypeError, ValueError):
                logger.warning("Dropping non-integer pending value %r for %s", raw, key)
                continue
            if count > 0:
                claimed[key] = count
        return claimed

    async def get_count(self, key: str) -> int:
        """Pending count for key; 0 if absent or Redis is unavailable."""
        if not self.enabled:
            return 0
        try:
            raw = await self._call("get", self._client.get(key))
        except AggregationStoreError:
            logger.warning("Could not read pending views for %s", key, exc_info=True)
            return 0
        try:
            return int(raw) if raw is not None else 0
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer pending value %r for %s", raw, key)
            return 0

    async def get_milestone(self, key: str) -> int | None:
        if not self.enabled:
            return None
        raw = await self._call("get", self._client.get(key))
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    async def set_milestone(self, key: str, milestone: int, ttl: int) -> None:
        if not self.enabled:
            return
        await self._call("setex", self._client.setex(key, ttl, str(milestone)))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_store: AggregationStore | None = None


def create_redis_client() -> Redis | None:
    """Build the Redis client from configuration, or None when not configured."""
    if not config.redis_enabled():
        return None
    return Redis.from_url(
        config.REDIS_URL,
        password=config.REDIS_TOKEN,
        decode_responses=True,
        socket_timeout=config.REMOTE_TIMEOUT_S,
        socket_connect_timeout=config.REMOTE_TIMEOUT_S,
    )


def get_aggregation_store() -> AggregationStore:
    """Process-wide adapter; configuration is inspected only on first use."""
    global _store
    if _store is None:
        client = create_redis_client()
        if client is None:
            logger.info("Redis not configured, view counts will be written directly to the database")
        _store = AggregationStore(client)
    return _store


async def close_aggregation_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
