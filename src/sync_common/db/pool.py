"""Asyncpg connection pool helpers."""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
import structlog

logger = structlog.get_logger(__name__)


class SettingsProtocol(Protocol):
    """Protocol for settings objects with database configuration."""

    database_url: Any
    db_pool_size: int
    db_connect_retries: int
    db_connect_retry_delay_seconds: float


async def create_pool(settings: SettingsProtocol) -> asyncpg.Pool:
    """Create an asyncpg pool, retrying while the database comes up.

    Raises the last connection error when every attempt fails: an unreachable
    store aborts startup instead of leaving the service half alive.
    """
    retries = max(1, settings.db_connect_retries)
    for attempt in range(1, retries + 1):
        try:
            pool = await asyncpg.create_pool(
                dsn=str(settings.database_url),
                max_size=settings.db_pool_size,
            )
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "Database connection failed",
                attempt=attempt,
                max_attempts=retries,
                error=str(exc),
            )
            if attempt == retries:
                raise
            await asyncio.sleep(settings.db_connect_retry_delay_seconds)
            continue
        logger.info("Database pool created", max_size=settings.db_pool_size)
        return pool
    raise RuntimeError("unreachable")  # pragma: no cover


class BaseRepository:
    """Thin wrapper over asyncpg pool operations."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._pool.acquire() as conn:
            return await conn.execute(query, *args)

    @staticmethod
    def _affected(status: str) -> int:
        """Row count from an asyncpg command tag such as ``DELETE 3``."""
        return int(status.split()[-1])
