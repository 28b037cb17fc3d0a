# lotbot/infra/pg_delivery_repo_async.py
"""
Async PostgreSQL webhook delivery repository (asyncpg).
Write-once dedup rows: one per provider delivery id.
"""
from __future__ import annotations
from lotbot.core.errors import UpstreamError
from lotbot.core.ports import AsyncDeliveryRepository
from lotbot.infra.db_async import db_conn
from lotbot.infra.metrics import AppMetrics
from lotbot.infra.logging_config import get_logger

logger = get_logger(__name__)


def _row_count(result: str | None) -> int:
    # asyncpg returns command tags like "INSERT 0 1" / "DELETE 3"
    if not result:
        return 0
    return int(result.split()[-1])


class AsyncPostgresDeliveryRepository(AsyncDeliveryRepository):
    """Idempotency guard backed by ``webhook_deliveries``."""

    async def mark_processed(self, delivery_id: str, sender_id: str | None = None) -> bool:
        """
        Atomically record a delivery id.

        A single ``INSERT ... ON CONFLICT DO NOTHING`` decides the outcome,
        so two concurrent deliveries with the same id cannot both win.
        Not retried: a retry after an ambiguous failure could report a
        first delivery as a duplicate.

        Returns:
            True  => first time seen, proceed
            False => duplicate
        """
        try:
            async with db_conn() as conn:
                result = await conn.execute(
                    """
                    INSERT INTO webhook_deliveries(delivery_id, sender_id)
                    VALUES ($1, $2)
                    ON CONFLICT (delivery_id) DO NOTHING
                    """,
                    delivery_id,
                    sender_id,
                )
        except Exception as exc:
            logger.error(f"Failed to record delivery: delivery_id={delivery_id}", exc_info=True)
            AppMetrics.database_error("delivery_mark_processed")
            raise UpstreamError(f"Delivery store unavailable: {exc.__class__.__name__}") from exc

        first_time = _row_count(result) == 1
        if not first_time:
            logger.info(f"Duplicate delivery: delivery_id={delivery_id}")
        return first_time

    async def cleanup_old(self, ttl_days: int = 30) -> int:
        """
        Delete delivery rows older than ``ttl_days``.

        Providers stop retrying long before that, so old rows no longer
        protect anything.

        Returns:
            Number of deleted rows.
        """
        try:
            async with db_conn() as conn:
                result = await conn.execute(
                    """
                    DELETE FROM webhook_deliveries
                    WHERE received_at < now() - ($1 || ' days')::interval
                    """,
                    str(ttl_days),
                )
        except Exception:
            logger.error("Failed to cleanup old webhook deliveries", exc_info=True)
            AppMetrics.database_error("delivery_cleanup_old")
            raise

        deleted = _row_count(result)
        if deleted > 0:
            logger.info(f"Delivery dedup cleanup: deleted {deleted} rows older than {ttl_days}d")
        return deleted
