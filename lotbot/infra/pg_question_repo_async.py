# lotbot/infra/pg_question_repo_async.py
"""
Async PostgreSQL question repository (asyncpg).

The ``questions`` table belongs to the Q&A front-end.  This service
reads it to snapshot a selection and writes only ``status``,
``video_url`` and ``answer`` when applying or undoing a lot.
"""
from __future__ import annotations

from lotbot.core.domain import QuestionRecord, Snapshot
from lotbot.core.errors import UpstreamError
from lotbot.core.ports import AsyncQuestionRepository
from lotbot.infra.db_async import db_conn
from lotbot.infra.db_resilience_async import retry_on_transient_error
from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import AppMetrics

logger = get_logger(__name__)


class AsyncPostgresQuestionRepository(AsyncQuestionRepository):
    """Async PostgreSQL access to the live ``questions`` table."""

    async def get_many(self, ids: list[int]) -> dict[int, QuestionRecord]:
        try:
            rows = await self._fetch_many(ids)
        except Exception as exc:
            AppMetrics.database_error("questions_get_many")
            raise UpstreamError(f"Question store unavailable: {exc.__class__.__name__}") from exc

        return {
            row["id"]: QuestionRecord(
                id=row["id"],
                author=row["author"],
                text=row["text"],
                status=row["status"],
                answer=row["answer"],
                video_url=row["video_url"],
            )
            for row in rows
        }

    async def bulk_apply(self, ids: list[int], status: str, video_url: str) -> int:
        """
        Set ``status`` and ``video_url`` on every id in one statement.

        Returns:
            Number of rows updated.
        """
        try:
            result = await self._update_many(ids, status, video_url)
        except Exception as exc:
            logger.error(f"Bulk apply failed for {len(ids)} question(s)", exc_info=True)
            AppMetrics.database_error("questions_bulk_apply")
            raise UpstreamError(f"Question store update failed: {exc.__class__.__name__}") from exc

        return int(result.split()[-1]) if result else 0

    async def restore(self, snapshot: Snapshot) -> None:
        """Write a snapshot's pre-image back to its question."""
        try:
            await self._restore_one(snapshot)
        except Exception as exc:
            logger.error(f"Restore failed for question #{snapshot.id}", exc_info=True)
            AppMetrics.database_error("questions_restore")
            raise UpstreamError(f"Question #{snapshot.id} restore failed: {exc.__class__.__name__}") from exc

    # ------------------------------------------------------------------
    # SQL
    # ------------------------------------------------------------------

    @retry_on_transient_error(max_retries=2)
    async def _fetch_many(self, ids: list[int]):
        async with db_conn() as conn:
            return await conn.fetch(
                """
                SELECT id, author, text, status, answer, video_url
                FROM questions
                WHERE id = ANY($1::bigint[])
                """,
                ids,
            )

    @retry_on_transient_error(max_retries=2)
    async def _update_many(self, ids: list[int], status: str, video_url: str) -> str:
        async with db_conn() as conn:
            return await conn.execute(
                """
                UPDATE questions
                SET status = $1, video_url = $2
                WHERE id = ANY($3::bigint[])
                """,
                status,
                video_url,
                ids,
            )

    @retry_on_transient_error(max_retries=2)
    async def _restore_one(self, snapshot: Snapshot) -> None:
        async with db_conn() as conn:
            await conn.execute(
                """
                UPDATE questions
                SET status = $1, video_url = $2, answer = $3
                WHERE id = $4
                """,
                snapshot.previous_status,
                snapshot.previous_resource_url,
                snapshot.previous_answer_text,
                snapshot.id,
            )
