# lotbot/transport/adapters.py
"""
Provider adapters: raw gateway payloads -> ``InboundDelivery``.
"""
from __future__ import annotations

from lotbot.core.domain import InboundDelivery
from lotbot.infra.logging_config import get_logger

logger = get_logger(__name__)


class TelegramAdapter:
    """
    Adapter for Telegram Bot API updates.

    Telegram sends JSON Updates with structure:
    {
      "update_id": 123456,
      "message": {
        "message_id": 42,
        "from": {"id": 123, "first_name": "User", ...},
        "chat": {"id": 123, "type": "private", ...},
        "text": "/live https://youtu.be/...",
        "reply_to_message": {"text": "Data: ...\\nLote: L261018-1432-K7QX ...", ...}
      }
    }

    ``update_id`` is Telegram's delivery id: it is stable across
    redeliveries of the same update.
    """

    def adapt_update(self, update: dict) -> InboundDelivery | None:
        """Return None for updates that carry no message (edits, channel posts, ...)."""
        message = update.get("message")
        if not message:
            logger.debug(f"Telegram update: no 'message' field, ignoring (keys={list(update.keys())})")
            return None

        sender = message.get("from") or {}
        sender_id = str(sender.get("id", ""))
        if not sender_id:
            logger.warning("Telegram message: missing from.id, ignoring")
            return None

        chat_id = (message.get("chat") or {}).get("id")
        reply_to = message.get("reply_to_message") or {}
        update_id = update.get("update_id")

        return InboundDelivery(
            sender_id=sender_id,
            text=message.get("text"),
            delivery_id=str(update_id) if update_id is not None else None,
            chat_id=str(chat_id) if chat_id is not None else None,
            reply_context_text=reply_to.get("text") or reply_to.get("caption"),
        )
