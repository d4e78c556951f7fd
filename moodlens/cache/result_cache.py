"""Redis cache-aside store for aggregated analysis results, keyed by video id.

Every operation is best-effort: backend errors are logged and turned into a
miss, a no-op, or "unavailable". The cache never fails a request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
from pydantic import ValidationError

from moodlens.analysis.models import AggregatedResult
from moodlens.errors import CacheError

logger = logging.getLogger(__name__)

CACHE_PREFIX = "video:analysis:"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


def cache_key(source_id: str, prefix: str = CACHE_PREFIX) -> str:
    """Redis key for a video id. Pure, so stable across restarts."""
    return f"{prefix}{source_id}"


@dataclass(frozen=True)
class CacheStats:
    available: bool
    keys: int


def redis_client_factory(
    host: str = "localhost",
    port: int = 6379,
    password: str = "",
    connect_timeout: float = 5.0,
) -> Callable[[], Any]:
    """Return a zero-argument factory building a redis.asyncio client."""

    def build() -> aioredis.Redis:
        return aioredis.Redis(
            host=host,
            port=port,
            password=password or None,
            socket_connect_timeout=connect_timeout,
            socket_timeout=connect_timeout,
            decode_responses=True,
        )

    return build


class ResultCache:
    """Cache of AggregatedResult values with TTL-based expiry."""

    def __init__(
        self,
        client_factory: Callable[[], Any],
        prefix: str = CACHE_PREFIX,
        default_ttl: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._client_factory = client_factory
        self.prefix = prefix
        self.default_ttl = default_ttl
        self._client: Any = None

    async def connect(self) -> bool:
        """Connect and ping. On failure the cache stays disabled."""
        client = None
        try:
            client = self._client_factory()
            await client.ping()
        except Exception as exc:
            logger.warning("Failed to initialise Redis cache: %s", exc)
            logger.warning("Cache disabled; every analysis will be processed from scratch.")
            if client is not None:
                await self._close_quietly(client)
            self._client = None
            return False
        self._client = client
        logger.info("Redis cache connected")
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._close_quietly(self._client)
            self._client = None
            logger.info("Redis cache connection closed")

    @staticmethod
    async def _close_quietly(client: Any) -> None:
        try:
            await client.aclose()
        except Exception:
            logger.debug("Error closing Redis client", exc_info=True)

    def key(self, source_id: str) -> str:
        return cache_key(source_id, self.prefix)

    def is_available(self) -> bool:
        return self._client is not None

    async def get(self, source_id: str) -> AggregatedResult | None:
        if self._client is None:
            return None
        try:
            cached = await self._client.get(self.key(source_id))
            if cached is None:
                logger.debug("Cache MISS for video: %s", source_id)
                return None
            result = self._decode(cached)
        except CacheError as exc:
            logger.error("Error reading from cache for video %s: %s", source_id, exc)
            return None
        except Exception:
            logger.exception("Error reading from cache for video %s", source_id)
            return None
        logger.info("Cache HIT for video: %s", source_id)
        return result

    @staticmethod
    def _decode(payload: str | bytes) -> AggregatedResult:
        try:
            return AggregatedResult.model_validate_json(payload)
        except ValidationError as exc:
            raise CacheError(f"Corrupt cache entry: {exc.error_count()} validation errors") from exc

    async def set(
        self, source_id: str, result: AggregatedResult, ttl: int | None = None
    ) -> None:
        """Store ``result`` for ``ttl`` seconds (default TTL when None).

        A non-positive TTL means the entry is already expired: any existing
        value is removed and nothing is written.
        """
        if self._client is None:
            return
        ttl = self.default_ttl if ttl is None else ttl
        key = self.key(source_id)
        try:
            if ttl <= 0:
                await self._client.delete(key)
                return
            await self._client.set(key, result.model_dump_json(), ex=ttl)
        except Exception:
            logger.exception("Error writing to cache for video %s", source_id)
            return
        logger.info("Cached result for video: %s (TTL: %ds)", source_id, ttl)

    async def invalidate(self, source_id: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.delete(self.key(source_id))
        except Exception:
            logger.exception("Error invalidating cache for video %s", source_id)
            return
        logger.info("Cache invalidated for video: %s", source_id)

    async def stats(self) -> CacheStats:
        if self._client is None:
            return CacheStats(available=False, keys=0)
        try:
            count = 0
            async for _ in self._client.scan_iter(match=f"{self.prefix}*"):
                count += 1
        except Exception:
            logger.exception("Error getting cache stats")
            return CacheStats(available=False, keys=0)
        return CacheStats(available=True, keys=count)
