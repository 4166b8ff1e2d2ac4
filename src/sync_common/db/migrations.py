"""SQL migrations applied at service startup."""
from __future__ import annotations

import hashlib
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]
import structlog

logger = structlog.get_logger(__name__)


class MigrationError(RuntimeError):
    """A migration file changed after it was applied, or versions collide."""


def load_migrations(migrations_dir: Path) -> dict[str, str]:
    migrations: dict[str, str] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise MigrationError(f"Duplicate migration version detected: {version}")
        migrations[version] = path.read_text(encoding="utf-8")
    return migrations


async def apply_migrations(pool: asyncpg.Pool, migrations_dir: Path, *, table: str) -> list[str]:
    """Apply pending ``*.sql`` files in lexical order. Returns applied versions.

    Each service keeps its own bookkeeping ``table`` so the broker and the
    consumer can share one database.
    """
    migrations = load_migrations(migrations_dir)
    if not migrations:
        logger.warning("No migrations found", path=str(migrations_dir))
        return []

    applied_now: list[str] = []
    async with pool.acquire() as conn:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                version text PRIMARY KEY,
                checksum text NOT NULL,
                applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )
        rows = await conn.fetch(f"SELECT version, checksum FROM {table}")
        applied = {row["version"]: row["checksum"] for row in rows}

        for version, sql in migrations.items():
            checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
            if version in applied:
                if applied[version] != checksum:
                    raise MigrationError(
                        f"Checksum mismatch for {version}: {applied[version]} (db) != {checksum} (file)"
                    )
                continue
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    f"INSERT INTO {table} (version, checksum) VALUES ($1, $2)",
                    version,
                    checksum,
                )
            applied_now.append(version)
            logger.info("Migration applied", version=version)

    if applied_now:
        logger.info("Migrations complete", applied=len(applied_now))
    return applied_now
