# lotbot/core/lifecycle.py
"""
Lot lifecycle: create (snapshot), apply, undo.

State machine:
    PENDING --apply--> APPLIED --undo--> REVERTED

``apply`` writes every question of the lot in one bulk UPDATE and only
then persists the lot.  If persisting the lot fails, the questions are
restored from the snapshots (compensation) before the error is raised,
so a failed apply does not leave records updated under a PENDING lot.

``undo`` restores questions one at a time because each snapshot carries
its own pre-image.  A failure mid-loop stops immediately; the raised
``UpstreamError`` lists which ids were restored and which were not, and
the lot stays APPLIED.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from lotbot.core.domain import (
    Destination,
    Lot,
    LotStatus,
    Snapshot,
    generate_lot_code,
)
from lotbot.core.errors import InvalidTransition, LotCodeCollision, NotFoundError, UpstreamError
from lotbot.core.ports import AsyncLotStore, AsyncQuestionRepository
from lotbot.infra.logging_config import get_logger, LogContext
from lotbot.infra.metrics import AppMetrics

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def latest_lot(lots: list[Lot], destination: Destination, status: LotStatus) -> Lot | None:
    """
    Most recent lot of ``destination`` in ``status``.

    APPLIED lots are ordered by ``applied_at``, everything else by
    ``created_at``.  ``sorted`` is stable, so store order breaks ties.
    """
    candidates = [lot for lot in lots if lot.destination == destination and lot.status == status]
    if not candidates:
        return None

    def sort_key(lot: Lot) -> datetime:
        if status == LotStatus.APPLIED and lot.applied_at:
            return lot.applied_at
        return lot.created_at

    return sorted(candidates, key=sort_key, reverse=True)[0]


class LifecycleEngine:
    """Creates lots and moves them through PENDING -> APPLIED -> REVERTED."""

    def __init__(
        self,
        *,
        lots: AsyncLotStore,
        questions: AsyncQuestionRepository,
        target_statuses: dict[str, str],
        code_attempts: int = 5,
        clock: Callable[[], datetime] = _utcnow,
        code_factory: Callable[[datetime], str] = generate_lot_code,
    ) -> None:
        self.lots = lots
        self.questions = questions
        self.target_statuses = target_statuses
        self.code_attempts = code_attempts
        self.clock = clock
        self.code_factory = code_factory

    def target_status(self, destination: Destination) -> str:
        return self.target_statuses[destination.value]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_lot(self, destination: Destination, selection: list[dict]) -> Lot:
        """
        Snapshot the selected questions and persist a new PENDING lot.

        Args:
            destination: Target track
            selection: ``[{"id": int, "author": str|None, "text": str}, ...]``
                in the order the admin selected them.  ``author``/``text``
                from the request are used for rendering; the status, link
                and answer pre-images come from the live records.

        Raises:
            NotFoundError: a selected id does not exist in the question store
            UpstreamError: storage failure, or no free lot code after retries
        """
        ids = [int(q["id"]) for q in selection]
        records = await self.questions.get_many(ids)

        missing = [qid for qid in ids if qid not in records]
        if missing:
            raise NotFoundError(f"Unknown question id(s): {', '.join(map(str, missing))}")

        items = tuple(
            Snapshot.capture(records[int(q["id"])], author=q.get("author"), text=q.get("text"))
            for q in selection
        )

        for attempt in range(1, self.code_attempts + 1):
            now = self.clock()
            lot = Lot(
                lot_code=self.code_factory(now),
                destination=destination,
                created_at=now,
                items=items,
            )
            try:
                await self.lots.create(lot)
            except LotCodeCollision:
                logger.warning(
                    f"Lot code collision on attempt {attempt}/{self.code_attempts}: {lot.lot_code}"
                )
                continue

            AppMetrics.lot_created(destination.value)
            LogContext(logger, lot_code=lot.lot_code).info(
                f"Lot created: destination={destination.value}, items={len(items)}"
            )
            return lot

        raise UpstreamError(f"Could not allocate a unique lot code after {self.code_attempts} attempts")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get(self, lot_code: str) -> Lot:
        return await self.lots.get(lot_code)

    async def latest_pending(self, destination: Destination) -> Lot | None:
        return latest_lot(await self.lots.list_all(), destination, LotStatus.PENDING)

    async def latest_applied(self, destination: Destination) -> Lot | None:
        return latest_lot(await self.lots.list_all(), destination, LotStatus.APPLIED)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def apply(self, lot: Lot, resource_url: str, actor: str) -> Lot:
        """
        PENDING -> APPLIED.

        Raises:
            InvalidTransition: lot is not PENDING (checked before any write)
            UpstreamError: question store or lot store failure
        """
        log_ctx = LogContext(logger, lot_code=lot.lot_code, sender_id=actor)
        applied = lot.mark_applied(resource_url, actor, self.clock())
        ids = lot.question_ids

        try:
            updated = await self.questions.bulk_apply(ids, self.target_status(lot.destination), resource_url)
        except UpstreamError:
            AppMetrics.upstream_error("bulk_apply")
            raise

        if updated != len(ids):
            log_ctx.warning(f"Bulk apply touched {updated} of {len(ids)} questions")

        try:
            await self.lots.save(applied, expected_status=LotStatus.PENDING)
        except InvalidTransition:
            # Another apply won the race between our read and our write
            winner = await self.lots.get(lot.lot_code)
            log_ctx.warning(f"Concurrent transition detected: lot is now {winner.status.value}")
            if winner.status == LotStatus.APPLIED and winner.external_resource_url:
                await self.questions.bulk_apply(
                    ids, self.target_status(lot.destination), winner.external_resource_url
                )
            else:
                await self._compensate(lot, log_ctx)
            raise
        except UpstreamError as exc:
            log_ctx.critical(
                f"Lot persist failed after questions were updated: {exc.detail}. "
                f"Restoring {len(ids)} question(s) from snapshot"
            )
            AppMetrics.upstream_error("apply_persist")
            await self._compensate(lot, log_ctx)
            raise

        AppMetrics.lot_applied(lot.destination.value)
        log_ctx.info(f"Lot applied: destination={lot.destination.value}, items={len(ids)}")
        return applied

    async def undo(self, lot: Lot, actor: str) -> Lot:
        """
        APPLIED -> REVERTED.

        Raises:
            InvalidTransition: lot is not APPLIED (checked before any write)
            UpstreamError: a restore or the lot persist failed
        """
        log_ctx = LogContext(logger, lot_code=lot.lot_code, sender_id=actor)
        reverted = lot.mark_reverted(actor, self.clock())

        completed: list[int] = []
        for index, item in enumerate(lot.items):
            try:
                await self.questions.restore(item)
            except Exception as exc:
                pending = [i.id for i in lot.items[index:]]
                log_ctx.error(
                    f"Undo stopped at question #{item.id}: {exc.__class__.__name__}. "
                    f"restored={completed} not_restored={pending}"
                )
                AppMetrics.upstream_error("undo_restore")
                raise UpstreamError(
                    f"Undo of lot {lot.lot_code} stopped at question #{item.id}",
                    completed=completed,
                    pending=pending,
                ) from exc
            completed.append(item.id)

        try:
            await self.lots.save(reverted, expected_status=LotStatus.APPLIED)
        except UpstreamError:
            log_ctx.critical("Lot persist failed after all questions were restored; lot still APPLIED")
            AppMetrics.upstream_error("undo_persist")
            raise

        AppMetrics.lot_reverted(lot.destination.value)
        log_ctx.info(f"Lot reverted: destination={lot.destination.value}, items={len(completed)}")
        return reverted

    async def _compensate(self, lot: Lot, log_ctx: LogContext) -> None:
        """Best-effort restore after a failed apply persist."""
        failed: list[int] = []
        for item in lot.items:
            try:
                await self.questions.restore(item)
            except Exception:
                failed.append(item.id)

        if failed:
            log_ctx.critical(
                f"Compensation incomplete, manual reconciliation needed: questions {failed} "
                f"still carry the applied status/link while the lot is PENDING"
            )
        else:
            log_ctx.warning("Compensation complete: questions restored, lot remains PENDING")
