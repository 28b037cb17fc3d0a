#!/usr/bin/env python3
# lotbot/infra/migrate.py
"""
Standalone provisioning runner.

Run separately from application startup:
    python -m lotbot.infra.migrate

Applies pending SQL migrations, trims expired delivery dedup rows and
makes sure the lot bucket exists.
This should run in CI/CD before deployment or manually before the first
start; the application only validates the schema version at startup.
"""
import asyncio
import sys

from lotbot.infra.migrations_async import apply_migrations
from lotbot.infra.db_async import init_pool, close_pool
from lotbot.infra.pg_delivery_repo_async import AsyncPostgresDeliveryRepository
from lotbot.infra.logging_config import setup_logging, get_logger
from lotbot.config import settings

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main() -> int:
    logger.info("=" * 60)
    logger.info("Lot bot provisioning")
    logger.info(f"Environment: {settings.app_env}")
    logger.info("=" * 60)

    try:
        await init_pool()
        result = await apply_migrations()

        if result['applied']:
            for migration in result['applied']:
                logger.info(f"  ✓ {migration}")
        else:
            logger.info("No new migrations to apply")

        deleted = await AsyncPostgresDeliveryRepository().cleanup_old(settings.delivery_ttl_days)
        logger.info(f"Delivery dedup rows trimmed: {deleted}")

        if settings.s3_enabled:
            from lotbot.infra.s3_lot_store import get_lot_store
            get_lot_store().ensure_bucket()
        else:
            logger.warning("Lot storage not configured; bucket provisioning skipped")

        return 0 if result['ok'] else 1

    except Exception as exc:
        logger.critical(f"PROVISIONING FAILED: {exc}", exc_info=True)
        return 1

    finally:
        await close_pool()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
