# lotbot/core/routing.py
"""
Recipient routing and fan-out.

Operators receive every dispatched lot and are the only senders whose
commands are executed.  Notification recipients only receive apply/undo
notices.  The two lists may overlap.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from lotbot.core.errors import UpstreamError
from lotbot.core.ports import Messenger
from lotbot.infra.logging_config import get_logger, mask_chat_id
from lotbot.infra.metrics import AppMetrics

logger = get_logger(__name__)


def _dedupe(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for chat_id in ids:
        if chat_id not in seen:
            seen.add(chat_id)
            result.append(chat_id)
    return result


@dataclass(frozen=True)
class RoutingConfig:
    operators: tuple[str, ...] = field(default_factory=tuple)
    notify: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls) -> "RoutingConfig":
        from lotbot.config import settings

        return cls(operators=tuple(settings.operator_ids), notify=tuple(settings.notify_ids))

    def is_operator(self, sender_id: str) -> bool:
        return str(sender_id) in self.operators

    def notice_recipients(self, actor: str) -> list[str]:
        """
        Who hears about an apply/undo performed by ``actor``.

        Notification recipients only.  Those that are also operators are
        dropped when the actor is an operator.  The actor never gets a
        notice (they get the confirmation reply instead).
        """
        actor = str(actor)
        actor_is_operator = self.is_operator(actor)

        recipients = []
        for chat_id in self.notify:
            if chat_id == actor:
                continue
            if actor_is_operator and chat_id in self.operators:
                continue
            recipients.append(chat_id)

        return _dedupe(recipients)


async def broadcast(messenger: Messenger, recipients: list[str], text: str) -> int:
    """
    Send ``text`` to each recipient in order.

    The first failure aborts the remaining sends and is raised as
    ``UpstreamError``; recipients before it have already been sent to.

    Returns:
        Number of messages sent.
    """
    sent = 0
    for chat_id in recipients:
        try:
            await messenger.send_text(chat_id, text)
        except UpstreamError:
            logger.error(
                f"Broadcast aborted at recipient {sent + 1}/{len(recipients)}: "
                f"to={mask_chat_id(chat_id)}"
            )
            AppMetrics.upstream_error("broadcast")
            raise
        sent += 1
    return sent
