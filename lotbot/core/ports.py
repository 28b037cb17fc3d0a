# lotbot/core/ports.py
from __future__ import annotations
from typing import Protocol, Optional
from lotbot.core.domain import Lot, LotStatus, QuestionRecord, Snapshot


# ============================================================================
# ASYNC PROTOCOLS
# ============================================================================

class AsyncLotStore(Protocol):
    async def create(self, lot: Lot) -> None:
        """Raise ``LotCodeCollision`` if ``lot.lot_code`` already exists."""
        ...

    async def get(self, lot_code: str) -> Lot:
        """Raise ``NotFoundError`` for an unknown code."""
        ...

    async def list_all(self) -> list[Lot]: ...

    async def save(self, lot: Lot, expected_status: Optional[LotStatus] = None) -> None:
        """
        Replace the whole record.  With ``expected_status`` the write only
        happens if the stored lot still has that status, otherwise
        ``InvalidTransition`` is raised.
        """
        ...


class AsyncDeliveryRepository(Protocol):
    async def mark_processed(self, delivery_id: str, sender_id: str | None = None) -> bool:
        """
        True  => first time this delivery id is seen, proceed
        False => duplicate, skip processing
        """
        ...


class AsyncQuestionRepository(Protocol):
    async def get_many(self, ids: list[int]) -> dict[int, QuestionRecord]: ...

    async def bulk_apply(self, ids: list[int], status: str, video_url: str) -> int: ...

    async def restore(self, snapshot: Snapshot) -> None: ...


class AsyncLeadRepository(Protocol):
    async def record_access_check(
        self,
        email: str,
        allowed: bool,
        source: str,
        name: str | None = None,
        phone: str | None = None,
    ) -> None: ...


class Messenger(Protocol):
    async def send_text(self, chat_id: str, text: str) -> None:
        """Raise ``UpstreamError`` when the gateway rejects the message."""
        ...
