# site_dispatch/infra/schema_validator.py
"""
Startup check that the database schema matches the expected migration.

The API does NOT run migrations itself; it refuses to start against a
database that is uninitialised or on a different schema version.
"""
from __future__ import annotations
from site_dispatch.config import settings
from site_dispatch.infra.db_async import db_conn
from site_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_MIGRATE_HINT = "Run migrations first: python -m site_dispatch.infra.migrate"


async def validate_schema_version() -> dict:
    """
    Raises:
        RuntimeError: If the schema is missing or on another version
    """
    async with db_conn() as conn:
        table_exists = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name = 'schema_migrations'
            )
            """
        )
        if not table_exists:
            error = f"Schema migrations table not found. {_MIGRATE_HINT}"
            logger.critical(error)
            raise RuntimeError(error)

        latest = await conn.fetchrow(
            "SELECT version, applied_at FROM schema_migrations ORDER BY version DESC LIMIT 1"
        )

    if not latest:
        error = f"No migrations have been applied. {_MIGRATE_HINT}"
        logger.critical(error)
        raise RuntimeError(error)

    current_version = latest['version']
    if current_version != settings.expected_schema_version:
        error = (
            f"Schema version mismatch! Expected: {settings.expected_schema_version}, "
            f"Found: {current_version}. {_MIGRATE_HINT}"
        )
        logger.critical(error, extra={
            "expected": settings.expected_schema_version,
            "current": current_version,
        })
        raise RuntimeError(error)

    logger.info(f"Schema version validated: {current_version}")
    return {
        "ok": True,
        "current_version": current_version,
        "expected_version": settings.expected_schema_version,
    }
