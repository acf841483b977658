# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Advisory Redis cache for published risk scores.

Nothing the authentication flow decides depends on a cache hit. Assessments
are written here so that dashboards and fraud tooling can read the latest
score for a user without touching the record store.

Keys:
    ``risk:{user_id}:{window}``  one entry per TTL-sized time window
    ``risk:{user_id}:latest``    the most recent assessment
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from attrs import frozen
from beartype import beartype

from .config import Settings

__all__ = ["Cache", "CacheConfig", "risk_key"]

if TYPE_CHECKING:
    from redis.asyncio import Redis as RedisType
else:
    RedisType = redis.Redis

logger = logging.getLogger(__name__)


@frozen
class CacheConfig:
    url: str
    ttl_seconds: int = 300
    max_connections: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheConfig:
        return cls(url=settings.redis_url, ttl_seconds=settings.risk_cache_ttl_seconds)


def risk_key(user_id: str, window: int | None = None) -> str:
    """Cache key for a user's assessment in ``window``, or the latest one."""
    return f"risk:{user_id}:{'latest' if window is None else window}"


class Cache:
    """Thin async Redis wrapper storing JSON payloads with a TTL."""

    def __init__(
        self, config: CacheConfig, redis_client: RedisType | None = None
    ) -> None:
        """Create a cache wrapper.

        Args:
            config: Connection and TTL configuration.
            redis_client: Optional existing client, used as-is; ``connect``
                then does nothing.
        """
        self._config = config
        self._redis: RedisType | None = redis_client

    @beartype
    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = redis.from_url(
            self._config.url,
            max_connections=self._config.max_connections,
            decode_responses=True,
        )

    @beartype
    async def disconnect(self) -> None:
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    def _client(self) -> RedisType:
        if self._redis is None:
            raise RuntimeError("Cache not connected")
        return self._redis

    @beartype
    async def get(self, key: str) -> Any | None:
        raw = await self._client().get(key)
        return None if raw is None else json.loads(raw)

    @beartype
    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        seconds = self._config.ttl_seconds if ttl is None else ttl
        stored = await self._client().setex(
            key, timedelta(seconds=seconds), json.dumps(value, default=str)
        )
        return bool(stored)

    @beartype
    async def delete(self, key: str) -> bool:
        return bool(await self._client().delete(key) > 0)

    @beartype
    async def publish_risk(
        self, user_id: str, payload: dict[str, Any], assessed_at: datetime
    ) -> None:
        """Store an assessment under its time window and as the latest score."""
        window = int(assessed_at.timestamp()) // self._config.ttl_seconds
        async with self._client().pipeline(transaction=True) as pipe:
            encoded = json.dumps(payload, default=str)
            ttl = timedelta(seconds=self._config.ttl_seconds)
            pipe.setex(risk_key(user_id, window), ttl, encoded)
            pipe.setex(risk_key(user_id), ttl, encoded)
            await pipe.execute()

    @beartype
    async def latest_risk(self, user_id: str) -> dict[str, Any] | None:
        """Most recent published assessment for ``user_id``, if still cached."""
        return await self.get(risk_key(user_id))

    @beartype
    async def health_check(self) -> bool:
        if self._redis is None:
            return False
        try:
            await self._redis.ping()
        except redis.RedisError as e:
            logger.warning("Redis health check failed: %s", e)
            return False
        return True
