#!/usr/bin/env python3
# site_dispatch/infra/migrate.py
"""
Standalone migration runner.

    python -m site_dispatch.infra.migrate

Run before starting the API (CI/CD step, init container, or by hand).
The API validates the schema version at startup but never migrates.
"""
import asyncio
import sys

from site_dispatch.config import settings
from site_dispatch.infra.db_async import close_pool, init_pool
from site_dispatch.infra.logging_config import get_logger, setup_logging
from site_dispatch.infra.migrations_async import apply_migrations

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main() -> int:
    logger.info("=" * 60)
    logger.info("Site dispatch migration runner")
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Database: {settings.pghost}:{settings.pgport}/{settings.pgdatabase}")
    logger.info("=" * 60)

    try:
        await init_pool()
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    if result['applied']:
        for migration in result['applied']:
            logger.info(f"  applied {migration}")
    else:
        logger.info("No new migrations to apply")

    return 0 if result['ok'] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
