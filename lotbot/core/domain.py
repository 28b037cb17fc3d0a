# lotbot/core/domain.py
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from lotbot.core.errors import InvalidTransition, ValidationError


# ============================================================================
# ENUMS
# ============================================================================

class LotStatus(str, Enum):
    PENDING = "PENDING"
    APPLIED = "APPLIED"
    REVERTED = "REVERTED"


class QuestionStatus(str, Enum):
    """Status values of the live ``questions`` table."""
    PENDING = "PENDING"
    ANSWERED = "ANSWERED"
    PREMIUM = "PREMIUM"


class Destination(str, Enum):
    """Track a lot is dispatched for."""
    LIVE_GRATUITA = "LIVE_GRATUITA"
    DESPERTOS = "DESPERTOS"

    @property
    def label(self) -> str:
        return _DESTINATION_LABELS[self]

    @classmethod
    def parse(cls, raw: str | None) -> Optional["Destination"]:
        """Resolve a canonical value or a typed alias (case-insensitive)."""
        if not raw:
            return None
        return _DESTINATION_ALIASES.get(raw.strip().lower())


_DESTINATION_LABELS = {
    Destination.LIVE_GRATUITA: "Live Gratuita",
    Destination.DESPERTOS: "Despertos",
}

_DESTINATION_ALIASES = {
    "live_gratuita": Destination.LIVE_GRATUITA,
    "live": Destination.LIVE_GRATUITA,
    "gratuita": Destination.LIVE_GRATUITA,
    "public": Destination.LIVE_GRATUITA,
    "publico": Destination.LIVE_GRATUITA,
    "despertos": Destination.DESPERTOS,
    "premium": Destination.DESPERTOS,
}


# ============================================================================
# LOT CODES
# ============================================================================

# No 0/O/1/I so codes survive being read aloud or retyped
LOT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LOT_CODE_RE = re.compile(r"\bL\d{6}-\d{4}-[A-Z0-9]{4}\b", re.IGNORECASE)


def generate_lot_code(now: datetime | None = None) -> str:
    """``L`` + YYMMDD + ``-`` + HHMM + ``-`` + 4 random chars, e.g. ``L261018-1432-K7QX``."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(LOT_CODE_ALPHABET) for _ in range(4))
    return f"L{now:%y%m%d}-{now:%H%M}-{suffix}"


def normalize_lot_code(raw: str) -> str | None:
    match = LOT_CODE_RE.search(raw or "")
    return match.group(0).upper() if match else None


# ============================================================================
# SNAPSHOT / LOT
# ============================================================================

@dataclass(frozen=True)
class QuestionRecord:
    """Current state of one live question row."""
    id: int
    author: str | None
    text: str
    status: str
    answer: str | None = None
    video_url: str | None = None


@dataclass(frozen=True)
class Snapshot:
    """
    Pre-image of one question at lot-creation time.

    ``author``/``text`` feed the outbound message; the ``previous_*``
    fields are what ``undo`` writes back.
    """
    id: int
    author: str
    text: str
    previous_status: str
    previous_resource_url: str | None = None
    previous_answer_text: str | None = None

    @classmethod
    def capture(cls, record: QuestionRecord, author: str | None = None, text: str | None = None) -> "Snapshot":
        return cls(
            id=record.id,
            author=(author if author is not None else record.author) or "",
            text=text if text is not None else record.text,
            previous_status=record.status,
            previous_resource_url=record.video_url,
            previous_answer_text=record.answer,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "text": self.text,
            "previousStatus": self.previous_status,
            "previousResourceUrl": self.previous_resource_url,
            "previousAnswerText": self.previous_answer_text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        return cls(
            id=int(data["id"]),
            author=data.get("author") or "",
            text=data["text"],
            previous_status=data["previousStatus"],
            previous_resource_url=data.get("previousResourceUrl"),
            previous_answer_text=data.get("previousAnswerText"),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Lot:
    """
    A dispatched group of questions.

    Membership (``items``) is fixed at creation.  Status only moves
    PENDING -> APPLIED -> REVERTED; the transition helpers return a new
    ``Lot`` so the stored record is always replaced as a whole.
    """
    lot_code: str
    destination: Destination
    created_at: datetime
    items: tuple[Snapshot, ...]
    status: LotStatus = LotStatus.PENDING
    external_resource_url: str | None = None
    applied_at: datetime | None = None
    applied_by: str | None = None
    reverted_at: datetime | None = None
    reverted_by: str | None = None

    def __post_init__(self) -> None:
        if not self.items:
            raise ValidationError("A lot needs at least one question")
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    @property
    def question_ids(self) -> list[int]:
        return [item.id for item in self.items]

    def mark_applied(self, resource_url: str, actor: str, now: datetime) -> "Lot":
        if self.status != LotStatus.PENDING:
            raise InvalidTransition(self.lot_code, self.status.value, LotStatus.PENDING.value)
        return replace(
            self,
            status=LotStatus.APPLIED,
            external_resource_url=resource_url,
            applied_at=now,
            applied_by=actor,
        )

    def mark_reverted(self, actor: str, now: datetime) -> "Lot":
        if self.status != LotStatus.APPLIED:
            raise InvalidTransition(self.lot_code, self.status.value, LotStatus.APPLIED.value)
        # external_resource_url stays set after revert
        return replace(
            self,
            status=LotStatus.REVERTED,
            reverted_at=now,
            reverted_by=actor,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lotCode": self.lot_code,
            "destination": self.destination.value,
            "createdAt": _iso(self.created_at),
            "status": self.status.value,
            "externalResourceUrl": self.external_resource_url,
            "items": [item.to_dict() for item in self.items],
            "appliedAt": _iso(self.applied_at),
            "appliedBy": self.applied_by,
            "revertedAt": _iso(self.reverted_at),
            "revertedBy": self.reverted_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Lot":
        return cls(
            lot_code=data["lotCode"],
            destination=Destination(data["destination"]),
            created_at=_parse_dt(data["createdAt"]),
            items=tuple(Snapshot.from_dict(item) for item in data["items"]),
            status=LotStatus(data.get("status", LotStatus.PENDING.value)),
            external_resource_url=data.get("externalResourceUrl"),
            applied_at=_parse_dt(data.get("appliedAt")),
            applied_by=data.get("appliedBy"),
            reverted_at=_parse_dt(data.get("revertedAt")),
            reverted_by=data.get("revertedBy"),
        )


# ============================================================================
# INBOUND
# ============================================================================

@dataclass(frozen=True)
class InboundDelivery:
    """
    Normalized webhook delivery from the messaging gateway.

    ``chat_id`` is where replies go; it defaults to the sender (private
    chat with the bot).
    """
    sender_id: str
    text: str | None = None
    delivery_id: str | None = None
    chat_id: str | None = None
    reply_context_text: str | None = None

    @property
    def reply_chat_id(self) -> str:
        return self.chat_id or self.sender_id

    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())
