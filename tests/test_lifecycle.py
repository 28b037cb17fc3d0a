# tests/test_lifecycle.py
"""Tests for lot creation, apply and undo"""
import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from lotbot.core.domain import Destination, Lot, LotStatus, Snapshot
from lotbot.core.errors import InvalidTransition, NotFoundError, UpstreamError
from lotbot.core.lifecycle import LifecycleEngine, latest_lot
from fakes import selection, ticking_clock

URL = "https://youtu.be/abc12345678"


def codes(*values):
    it = iter(values)
    return lambda now: next(it)


class TestCreateLot:
    @pytest.mark.asyncio
    async def test_snapshots_in_request_order(self, engine, lot_store, question_repo):
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(12, 10, 11, repo=question_repo))

        assert lot.status == LotStatus.PENDING
        assert lot.question_ids == [12, 10, 11]
        assert lot.items[0].previous_status == "ANSWERED"
        assert lot.items[0].previous_resource_url == "https://youtu.be/old00000000"
        assert lot.items[0].previous_answer_text == "Resposta escrita"
        assert await lot_store.get(lot.lot_code) == lot

    @pytest.mark.asyncio
    async def test_unknown_question_id(self, engine, lot_store, question_repo):
        with pytest.raises(NotFoundError) as exc_info:
            await engine.create_lot(Destination.DESPERTOS, [{"id": 10, "text": "a"}, {"id": 999, "text": "b"}])

        assert "999" in exc_info.value.detail
        assert lot_store.lots == {}

    @pytest.mark.asyncio
    async def test_code_collision_regenerates(self, lot_store, question_repo):
        engine = LifecycleEngine(
            lots=lot_store,
            questions=question_repo,
            target_statuses={"LIVE_GRATUITA": "ANSWERED", "DESPERTOS": "PREMIUM"},
            clock=ticking_clock(),
            code_factory=codes("L261018-1432-AAAA", "L261018-1432-AAAA", "L261018-1432-BBBB"),
        )
        first = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, repo=question_repo))

        second = await engine.create_lot(Destination.LIVE_GRATUITA, selection(11, repo=question_repo))

        assert first.lot_code == "L261018-1432-AAAA"
        assert second.lot_code == "L261018-1432-BBBB"
        assert len(lot_store.lots) == 2

    @pytest.mark.asyncio
    async def test_code_collision_gives_up(self, lot_store, question_repo):
        engine = LifecycleEngine(
            lots=lot_store,
            questions=question_repo,
            target_statuses={"LIVE_GRATUITA": "ANSWERED", "DESPERTOS": "PREMIUM"},
            code_attempts=2,
            code_factory=lambda now: "L261018-1432-AAAA",
        )
        await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, repo=question_repo))

        with pytest.raises(UpstreamError):
            await engine.create_lot(Destination.LIVE_GRATUITA, selection(11, repo=question_repo))


class TestApplyUndo:
    @pytest.mark.asyncio
    async def test_apply_updates_every_question(self, engine, lot_store, question_repo):
        lot = await engine.create_lot(Destination.DESPERTOS, selection(10, 11, repo=question_repo))

        applied = await engine.apply(lot, URL, "100")

        assert applied.status == LotStatus.APPLIED
        assert applied.external_resource_url == URL
        assert applied.applied_by == "100"
        assert (await lot_store.get(lot.lot_code)).status == LotStatus.APPLIED
        for qid in (10, 11):
            assert question_repo.records[qid].status == "PREMIUM"
            assert question_repo.records[qid].video_url == URL
        assert question_repo.records[12].status == "ANSWERED"
        assert len(question_repo.bulk_calls) == 1

    @pytest.mark.asyncio
    async def test_undo_restores_pre_images(self, engine, lot_store, question_repo):
        before = dict(question_repo.records)
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, 11, 12, repo=question_repo))

        applied = await engine.apply(lot, URL, "100")
        reverted = await engine.undo(applied, "101")

        assert reverted.status == LotStatus.REVERTED
        assert reverted.reverted_by == "101"
        assert reverted.external_resource_url == URL
        assert question_repo.records == before
        assert (await lot_store.get(lot.lot_code)).status == LotStatus.REVERTED

    @pytest.mark.asyncio
    async def test_apply_twice_rejected_without_writes(self, engine, question_repo):
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, repo=question_repo))
        applied = await engine.apply(lot, URL, "100")

        with pytest.raises(InvalidTransition) as exc_info:
            await engine.apply(applied, "https://youtu.be/zzz12345678", "101")

        assert exc_info.value.current == "APPLIED"
        assert question_repo.records[10].video_url == URL
        assert len(question_repo.bulk_calls) == 1

    @pytest.mark.asyncio
    async def test_undo_requires_applied(self, engine, question_repo):
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, repo=question_repo))

        with pytest.raises(InvalidTransition) as exc_info:
            await engine.undo(lot, "100")

        assert exc_info.value.current == "PENDING"
        assert exc_info.value.required == "APPLIED"

    @pytest.mark.asyncio
    async def test_apply_bulk_failure_leaves_lot_pending(self, engine, lot_store, question_repo):
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, repo=question_repo))
        question_repo.fail_bulk_apply = True

        with pytest.raises(UpstreamError):
            await engine.apply(lot, URL, "100")

        assert (await lot_store.get(lot.lot_code)).status == LotStatus.PENDING

    @pytest.mark.asyncio
    async def test_apply_persist_failure_compensates(self, engine, lot_store, question_repo):
        before = dict(question_repo.records)
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, 12, repo=question_repo))
        lot_store.fail_save = True

        with pytest.raises(UpstreamError):
            await engine.apply(lot, URL, "100")

        assert question_repo.records == before
        assert (await lot_store.get(lot.lot_code)).status == LotStatus.PENDING

    @pytest.mark.asyncio
    async def test_apply_lost_race_keeps_winner_link(self, engine, lot_store, question_repo):
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, 11, repo=question_repo))
        stale = lot
        await engine.apply(lot, URL, "100")

        with pytest.raises(InvalidTransition):
            # Read PENDING before the winner's write landed
            await engine.apply(stale, "https://youtu.be/zzz12345678", "101")

        for qid in (10, 11):
            assert question_repo.records[qid].video_url == URL
        assert (await lot_store.get(lot.lot_code)).applied_by == "100"

    @pytest.mark.asyncio
    async def test_undo_partial_failure_reports_progress(self, engine, lot_store, question_repo):
        lot = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, 11, 12, repo=question_repo))
        applied = await engine.apply(lot, URL, "100")
        question_repo.fail_restore_ids = {11}

        with pytest.raises(UpstreamError) as exc_info:
            await engine.undo(applied, "100")

        assert exc_info.value.completed == [10]
        assert exc_info.value.pending == [11, 12]
        assert question_repo.records[10].status == "PENDING"
        assert question_repo.records[12].video_url == URL
        assert (await lot_store.get(lot.lot_code)).status == LotStatus.APPLIED


class TestLatestLot:
    def _lot(self, code, destination, status, created_minutes, applied_minutes=None):
        base = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        return Lot(
            lot_code=code,
            destination=destination,
            created_at=base + timedelta(minutes=created_minutes),
            items=(Snapshot(id=1, author="a", text="t", previous_status="PENDING"),),
            status=status,
            applied_at=base + timedelta(minutes=applied_minutes) if applied_minutes is not None else None,
        )

    def test_latest_pending_by_creation(self):
        lots = [
            self._lot("A", Destination.LIVE_GRATUITA, LotStatus.PENDING, 1),
            self._lot("B", Destination.LIVE_GRATUITA, LotStatus.PENDING, 5),
            self._lot("C", Destination.DESPERTOS, LotStatus.PENDING, 9),
            self._lot("D", Destination.LIVE_GRATUITA, LotStatus.APPLIED, 7, 8),
        ]

        assert latest_lot(lots, Destination.LIVE_GRATUITA, LotStatus.PENDING).lot_code == "B"

    def test_latest_applied_by_apply_time(self):
        lots = [
            self._lot("A", Destination.DESPERTOS, LotStatus.APPLIED, 1, 30),
            self._lot("B", Destination.DESPERTOS, LotStatus.APPLIED, 5, 10),
        ]

        assert latest_lot(lots, Destination.DESPERTOS, LotStatus.APPLIED).lot_code == "A"

    def test_ties_keep_store_order(self):
        lots = [
            self._lot("A", Destination.DESPERTOS, LotStatus.PENDING, 3),
            self._lot("B", Destination.DESPERTOS, LotStatus.PENDING, 3),
        ]

        assert latest_lot(lots, Destination.DESPERTOS, LotStatus.PENDING).lot_code == "A"

    def test_none_when_no_candidates(self):
        assert latest_lot([], Destination.DESPERTOS, LotStatus.PENDING) is None

    @pytest.mark.asyncio
    async def test_engine_lookups(self, engine, question_repo):
        first = await engine.create_lot(Destination.LIVE_GRATUITA, selection(10, repo=question_repo))
        second = await engine.create_lot(Destination.LIVE_GRATUITA, selection(11, repo=question_repo))
        await engine.apply(first, URL, "100")

        assert (await engine.latest_pending(Destination.LIVE_GRATUITA)).lot_code == second.lot_code
        assert (await engine.latest_applied(Destination.LIVE_GRATUITA)).lot_code == first.lot_code
        assert await engine.latest_pending(Destination.DESPERTOS) is None
