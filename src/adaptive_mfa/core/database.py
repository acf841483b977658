# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""PostgreSQL connection management on an asyncpg pool."""

import asyncio
import contextlib
import json
import logging
import urllib.parse
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .config import Settings
from .result_types import Err, Ok, Result

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Errors after which the same statement may succeed on a fresh connection.
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    ConnectionError,
    TimeoutError,
)


@frozen
class PoolConfig:
    """Immutable pool configuration."""

    min_connections: int = field()
    max_connections: int = field()
    connection_timeout: float = field(default=10.0)
    command_timeout: float = field(default=30.0)
    server_settings: dict[str, str] = field(factory=dict)


@frozen
class RecoveryConfig:
    """Connection recovery configuration."""

    max_retry_attempts: int = field(default=3)
    retry_delay_seconds: float = field(default=0.2)
    exponential_backoff: bool = field(default=True)


class Database:
    """asyncpg pool wrapper with retry on connection loss."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._pool: asyncpg.Pool | None = None
        self._pool_config = PoolConfig(
            min_connections=settings.database_pool_min,
            max_connections=settings.database_pool_max,
            connection_timeout=settings.database_pool_timeout,
            command_timeout=settings.database_command_timeout,
            server_settings={"application_name": "adaptive_mfa"},
        )
        self._recovery_config = RecoveryConfig(
            max_retry_attempts=settings.database_retry_attempts
        )

    @beartype
    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        """Register JSON codecs so list and dict columns round-trip."""
        for type_name in ("json", "jsonb"):
            await conn.set_type_codec(
                type_name,
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

    @beartype
    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        db_url = self._settings.asyncpg_url
        parsed = urllib.parse.urlparse(db_url)
        logger.info(
            "Connecting to database %s:%s/%s",
            parsed.hostname,
            parsed.port,
            parsed.path.lstrip("/"),
        )

        self._pool = await asyncpg.create_pool(
            db_url,
            min_size=self._pool_config.min_connections,
            max_size=self._pool_config.max_connections,
            command_timeout=self._pool_config.command_timeout,
            server_settings=self._pool_config.server_settings,
            init=self._init_connection,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is None:
            return
        try:
            await asyncio.wait_for(self._pool.close(), timeout=5.0)
        except TimeoutError:
            logger.warning("Pool close timed out after 5 seconds - forcing termination")
            self._pool.terminate()
        self._pool = None

    @contextlib.asynccontextmanager
    async def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection."""
        if self._pool is None:
            raise RuntimeError("Database not connected")

        timeout = timeout or self._pool_config.connection_timeout
        async with asyncio.timeout(timeout):
            conn = await self._pool.acquire()
        try:
            yield conn
        finally:
            await self._pool.release(conn)

    async def _with_retry(
        self, operation: Callable[[asyncpg.Connection], Awaitable[R]]
    ) -> R:
        """Run ``operation`` on a connection, retrying on connection errors."""
        attempts = self._recovery_config.max_retry_attempts
        for attempt in range(attempts):
            try:
                async with self.acquire() as conn:
                    return await operation(conn)
            except RETRYABLE_ERRORS as e:
                if attempt == attempts - 1:
                    raise
                delay = self._recovery_config.retry_delay_seconds
                if self._recovery_config.exponential_backoff:
                    delay *= 2**attempt
                logger.warning(
                    "Database operation failed (attempt %d/%d): %s",
                    attempt + 1,
                    attempts,
                    e,
                )
                await asyncio.sleep(delay)
        raise RuntimeError("unreachable")

    @beartype
    async def execute(self, query: str, *args: Any) -> str:
        """Execute a statement and return its status tag."""
        return await self._with_retry(lambda conn: conn.execute(query, *args))

    @beartype
    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and fetch all rows."""
        return await self._with_retry(lambda conn: conn.fetch(query, *args))

    @beartype
    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Execute a query and fetch a single row."""
        return await self._with_retry(lambda conn: conn.fetchrow(query, *args))

    @beartype
    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        return await self._with_retry(lambda conn: conn.fetchval(query, *args))

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Create a database transaction context."""
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    @beartype
    async def health_check(self) -> Result[str, str]:
        """Round-trip a trivial query."""
        if self._pool is None:
            return Err("Database pool not initialized")
        try:
            await self.fetchval("SELECT 1")
        except (asyncpg.PostgresError, *RETRYABLE_ERRORS) as e:
            return Err(f"Health check failed: {str(e)}")
        return Ok("healthy")

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._pool is not None
