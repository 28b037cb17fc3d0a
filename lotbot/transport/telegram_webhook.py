# lotbot/transport/telegram_webhook.py
"""
Telegram Bot API webhook handler.

Handles:
- POST /webhooks/telegram - inbound Updates from Telegram
- raw Updates posted to the bot endpoint (``update_id`` present)

Security features:
- X-Telegram-Bot-Api-Secret-Token header validation (if configured)
"""
from __future__ import annotations

import json

from fastapi import Request
from fastapi.responses import JSONResponse

from lotbot.core.use_cases import LotBotService
from lotbot.transport.adapters import TelegramAdapter
from lotbot.transport.security import require_telegram_secret
from lotbot.infra.logging_config import get_logger, LogContext
from lotbot.infra.metrics import inc_counter

logger = get_logger(__name__)


async def handle_telegram_update(update: dict, service: LotBotService, request_id: str | None = None) -> dict:
    """Adapt one Update and run it through the bot service."""
    delivery = TelegramAdapter().adapt_update(update)
    if delivery is None:
        # Non-message update (edited_message, callback_query, etc.)
        return {"ok": True, "ignored": True}

    LogContext(
        logger,
        request_id=request_id,
        delivery_id=delivery.delivery_id,
        sender_id=delivery.sender_id,
    ).debug("Telegram update received")

    return await service.handle_delivery(delivery)


async def telegram_webhook_handler(request: Request) -> JSONResponse:
    """
    Handle Telegram Bot API webhook Updates (POST).

    Malformed bodies are acknowledged with 200 so Telegram does not keep
    redelivering them.  Upstream failures propagate as 500.
    """
    require_telegram_secret(request)

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Telegram webhook: invalid JSON payload, returning 200 to suppress retries")
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True, "ignored": True}, status_code=200)

    if not isinstance(payload, dict):
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True, "ignored": True}, status_code=200)

    service: LotBotService = request.app.state.service
    request_id = getattr(request.state, "request_id", None)

    result = await handle_telegram_update(payload, service, request_id)
    return JSONResponse(result, status_code=200)
