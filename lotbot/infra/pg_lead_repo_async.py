# lotbot/infra/pg_lead_repo_async.py
"""
Async PostgreSQL lead repository (asyncpg).
Stores one row per premium-access check.
"""
from __future__ import annotations

from lotbot.core.errors import UpstreamError
from lotbot.core.ports import AsyncLeadRepository
from lotbot.infra.db_async import db_conn
from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import AppMetrics

logger = get_logger(__name__)


class AsyncPostgresLeadRepository(AsyncLeadRepository):
    """Async PostgreSQL implementation of LeadRepository using asyncpg."""

    async def record_access_check(
        self,
        email: str,
        allowed: bool,
        source: str,
        name: str | None = None,
        phone: str | None = None,
    ) -> None:
        """
        Save an access-check lead.

        Args:
            email: Normalized (lower-case) e-mail
            allowed: Outcome of the membership check
            source: Which membership source decided (allow_all, allow_list, webhook, none)
            name: Optional name from the front-end form
            phone: Optional phone from the front-end form
        """
        try:
            async with db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO access_leads (email, name, phone, allowed, source)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    email,
                    name,
                    phone,
                    allowed,
                    source,
                )
        except Exception as exc:
            logger.error("Failed to record access lead", exc_info=True)
            AppMetrics.database_error("access_lead_insert")
            raise UpstreamError(f"Lead store unavailable: {exc.__class__.__name__}") from exc

        logger.debug(f"Access lead recorded: source={source}, allowed={allowed}")
