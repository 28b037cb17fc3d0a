# lotbot/transport/telegram_sender.py
"""
Telegram Bot API outbound sender.

Lots are sent as plain text (no parse mode): question texts are
user-written and may contain ``<``/``&`` that would break HTML parsing.
Link previews are disabled so a lot message is not dominated by the
preview of the first link in it.

Error classification (TelegramSendError.retryable):
- Token invalid (401)          → NOT retryable
- Bad request / blocked (400, 403) → NOT retryable
- Rate limiting (429)          → retryable
- Network / timeout / 5xx      → retryable

There is no retry queue: ``TelegramMessenger`` turns every send error
into ``UpstreamError`` and the request that triggered it fails.
"""
from __future__ import annotations

import asyncio

import aiohttp

from lotbot.config import settings
from lotbot.core.errors import UpstreamError
from lotbot.core.ports import Messenger
from lotbot.infra.http_client import telegram_session
from lotbot.infra.logging_config import get_logger, mask_chat_id
from lotbot.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


def _bot_url(method: str, token: str | None = None) -> str:
    return f"{TELEGRAM_API_BASE}/bot{token or settings.telegram_bot_token}/{method}"


class TelegramSendError(Exception):
    """Bot API call failed.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: ``error_code`` from the response body, if any.
        retryable:  Whether a later attempt could succeed.
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.error_code = error_code
        self.retryable = retryable
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


async def send_text_message(
    chat_id: str,
    text: str,
    token: str | None = None,
) -> dict:
    """
    Send a plain-text message.

    Raises:
        TelegramSendError: On API or connection errors
    """
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }
    return await _call(_bot_url("sendMessage", token), payload, chat_id)


async def set_webhook(
    webhook_url: str,
    secret_token: str | None = None,
    token: str | None = None,
) -> dict:
    """
    Point the bot at ``webhook_url``.

    ``secret_token`` is echoed back by Telegram in
    ``X-Telegram-Bot-Api-Secret-Token`` on every delivery.
    """
    payload: dict = {"url": webhook_url, "allowed_updates": ["message"]}
    if secret_token:
        payload["secret_token"] = secret_token

    return await _call(_bot_url("setWebhook", token), payload, "system")


class TelegramMessenger(Messenger):
    """``Messenger`` port over the Bot API."""

    def __init__(self, token: str | None = None):
        self._token = token

    async def send_text(self, chat_id: str, text: str) -> None:
        try:
            await send_text_message(chat_id, text, token=self._token)
        except TelegramSendError as exc:
            if exc.retryable:
                logger.warning(f"Send to {mask_chat_id(chat_id)} failed transiently; operator may resend")
            else:
                logger.error(f"Send to {mask_chat_id(chat_id)} rejected permanently: status={exc.status}")
            raise UpstreamError(
                f"Telegram send failed (status={exc.status}, retryable={exc.retryable})"
            ) from exc


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

async def _read_body(resp: aiohttp.ClientResponse) -> dict:
    try:
        body = await resp.json(content_type=None)
    except ValueError:
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return {}
    return body if isinstance(body, dict) else {}


def _classify(status: int, body: dict) -> TelegramSendError:
    description = body.get("description", "Unknown error")
    error_code = body.get("error_code")

    if status == 401 or error_code == 401:
        logger.error(f"Telegram rejected the bot token: {description}")
        inc_counter("telegram_outbound_auth_error")
        return TelegramSendError(status, error_code, description, retryable=False)

    if status in (400, 403):
        logger.warning(f"Telegram refused message: status={status}, {description}")
        inc_counter("telegram_outbound_rejected", status=status)
        return TelegramSendError(status, error_code, description, retryable=False)

    if status == 429:
        retry_after = (body.get("parameters") or {}).get("retry_after")
        logger.warning(f"Telegram rate limit hit, retry_after={retry_after}s")
        inc_counter("telegram_outbound_rate_limited")
        return TelegramSendError(status, error_code, description, retryable=True)

    logger.error(f"Telegram API error: status={status}, code={error_code}, msg={description}")
    inc_counter("telegram_outbound_error")
    return TelegramSendError(status, error_code, description, retryable=True)


async def _call(url: str, payload: dict, chat_id: str) -> dict:
    try:
        async with telegram_session().post(url, json=payload) as resp:
            body = await _read_body(resp)
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.error(f"Telegram API connection error: {exc!r}", exc_info=True)
        inc_counter("telegram_outbound_connection_error")
        raise TelegramSendError(0, None, repr(exc), retryable=True) from exc

    if status != 200 or not body.get("ok"):
        raise _classify(status, body)

    result = body.get("result")
    message_id = result.get("message_id") if isinstance(result, dict) else None
    logger.info(f"Telegram call ok: to={mask_chat_id(chat_id)}, msg_id={message_id}")
    inc_counter("telegram_outbound_sent")
    return body
