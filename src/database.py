"""Database pool and schema migrations."""

from pathlib import Path

import asyncpg
import structlog

from src.config import Settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

# Arbitrary constant shared by every engine instance
MIGRATION_LOCK_ID = 72_310_451


async def init_database(settings: Settings) -> asyncpg.Pool:
    """Open the pool the repository runs on.

    Returns:
        asyncpg connection pool
    """
    try:
        pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    except Exception as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise

    logger.info(
        "database_pool_created",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return pool


async def close_database(pool: asyncpg.Pool) -> None:
    await pool.close()
    logger.info("database_pool_closed")


async def run_migrations(pool: asyncpg.Pool, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply pending ``*.sql`` files in name order.

    Each file runs once, in its own transaction, and is recorded in
    ``schema_migrations``. An advisory lock keeps two engine instances
    starting together from applying the same file.

    Returns:
        Names of the files applied by this call
    """
    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return []

    migration_files = sorted(migrations_dir.glob("*.sql"))
    if not migration_files:
        logger.info("no_migrations_found")
        return []

    applied: list[str] = []
    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        try:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    filename TEXT PRIMARY KEY,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            rows = await conn.fetch("SELECT filename FROM schema_migrations")
            done = {row["filename"] for row in rows}

            for migration_file in migration_files:
                if migration_file.name in done:
                    continue
                try:
                    async with conn.transaction():
                        await conn.execute(migration_file.read_text())
                        await conn.execute(
                            "INSERT INTO schema_migrations (filename) VALUES ($1)",
                            migration_file.name,
                        )
                except Exception as e:
                    logger.error("migration_failed", file=migration_file.name, error=str(e))
                    raise
                applied.append(migration_file.name)
                logger.info("migration_applied", file=migration_file.name)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    if not applied:
        logger.info("migrations_up_to_date", total=len(migration_files))
    return applied


async def health_check(pool: asyncpg.Pool) -> bool:
    """Check database connectivity.

    Returns:
        True if database is healthy, False otherwise
    """
    try:
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
