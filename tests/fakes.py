# tests/fakes.py
"""In-memory implementations of the ports, shared by the test modules."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from lotbot.core.domain import Lot, LotStatus, QuestionRecord, Snapshot
from lotbot.core.errors import InvalidTransition, LotCodeCollision, NotFoundError, UpstreamError


class MockLotStore:
    """Async mock for AsyncLotStore (dict keyed by lot code, insertion ordered)"""

    def __init__(self):
        self.lots: dict[str, Lot] = {}
        self.fail_save = False
        self.saves = 0

    async def create(self, lot: Lot) -> None:
        if lot.lot_code in self.lots:
            raise LotCodeCollision(f"Lot code already exists: {lot.lot_code}")
        self.lots[lot.lot_code] = lot

    async def get(self, lot_code: str) -> Lot:
        try:
            return self.lots[lot_code]
        except KeyError:
            raise NotFoundError(f"Lot not found: {lot_code}") from None

    async def list_all(self) -> list[Lot]:
        return list(self.lots.values())

    async def save(self, lot: Lot, expected_status=None) -> None:
        if self.fail_save:
            raise UpstreamError("Lot storage save failed: SlowDown")
        current = self.lots.get(lot.lot_code)
        if expected_status is not None and current is not None and current.status != expected_status:
            raise InvalidTransition(lot.lot_code, current.status.value, expected_status.value)
        self.saves += 1
        self.lots[lot.lot_code] = lot


class MockQuestionRepository:
    """Async mock for AsyncQuestionRepository"""

    def __init__(self, records: list[QuestionRecord] | None = None):
        self.records: dict[int, QuestionRecord] = {r.id: r for r in (records or [])}
        self.fail_restore_ids: set[int] = set()
        self.fail_bulk_apply = False
        self.bulk_calls: list[tuple[list[int], str, str]] = []

    async def get_many(self, ids: list[int]) -> dict[int, QuestionRecord]:
        return {i: self.records[i] for i in ids if i in self.records}

    async def bulk_apply(self, ids: list[int], status: str, video_url: str) -> int:
        if self.fail_bulk_apply:
            raise UpstreamError("Question store update failed: ConnectionDoesNotExistError")
        self.bulk_calls.append((list(ids), status, video_url))
        updated = 0
        for i in ids:
            if i in self.records:
                self.records[i] = replace(self.records[i], status=status, video_url=video_url)
                updated += 1
        return updated

    async def restore(self, snapshot: Snapshot) -> None:
        if snapshot.id in self.fail_restore_ids:
            raise UpstreamError(f"Question #{snapshot.id} restore failed: ConnectionDoesNotExistError")
        self.records[snapshot.id] = replace(
            self.records[snapshot.id],
            status=snapshot.previous_status,
            video_url=snapshot.previous_resource_url,
            answer=snapshot.previous_answer_text,
        )


class MockDeliveryRepository:
    """Async mock for AsyncDeliveryRepository"""

    def __init__(self):
        self.seen: set[str] = set()

    async def mark_processed(self, delivery_id: str, sender_id: str | None = None) -> bool:
        if delivery_id in self.seen:
            return False
        self.seen.add(delivery_id)
        return True


class MockLeadRepository:
    """Async mock for AsyncLeadRepository"""

    def __init__(self):
        self.leads: list[dict] = []

    async def record_access_check(self, email, allowed, source, name=None, phone=None) -> None:
        self.leads.append(
            {"email": email, "allowed": allowed, "source": source, "name": name, "phone": phone}
        )


class MockMessenger:
    """Records sends; chat ids in ``fail_for`` raise UpstreamError"""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()

    async def send_text(self, chat_id: str, text: str) -> None:
        if chat_id in self.fail_for:
            raise UpstreamError("Telegram send failed (status=403)")
        self.sent.append((chat_id, text))

    def to(self, chat_id: str) -> list[str]:
        return [text for cid, text in self.sent if cid == chat_id]


def ticking_clock(start: datetime | None = None, step_seconds: int = 60):
    """Clock that advances ``step_seconds`` per call, so lots get distinct timestamps."""
    current = [start or datetime(2026, 10, 18, 17, 32, tzinfo=timezone.utc)]

    def clock() -> datetime:
        value = current[0]
        current[0] = value + timedelta(seconds=step_seconds)
        return value

    return clock


def sample_questions() -> list[QuestionRecord]:
    return [
        QuestionRecord(id=10, author="Maria", text="Como meditar?", status="PENDING"),
        QuestionRecord(id=11, author=None, text="O que é  presença?", status="PENDING"),
        QuestionRecord(
            id=12,
            author="João",
            text="Pergunta antiga",
            status="ANSWERED",
            answer="Resposta escrita",
            video_url="https://youtu.be/old00000000",
        ),
    ]


def selection(*ids: int, repo: MockQuestionRepository) -> list[dict]:
    """Build a dispatch selection from stored records, as the admin panel sends it."""
    return [
        {"id": i, "author": repo.records[i].author, "text": repo.records[i].text}
        for i in ids
    ]
