#!/usr/bin/env python3
# lotbot/transport/set_webhook.py
"""
Register the Telegram webhook.

Usage:
    python -m lotbot.transport.set_webhook https://bot.example.com/webhooks/telegram

Uses TELEGRAM_BOT_TOKEN and, when set, TELEGRAM_WEBHOOK_SECRET.
"""
import argparse
import asyncio
import sys

from lotbot.config import settings
from lotbot.infra.http_client import close_all_sessions
from lotbot.infra.logging_config import setup_logging, get_logger
from lotbot.transport.telegram_sender import TelegramSendError, set_webhook

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main(url: str) -> int:
    if not settings.telegram_bot_token:
        logger.critical("TELEGRAM_BOT_TOKEN is not set")
        return 1

    try:
        await set_webhook(url, secret_token=settings.telegram_webhook_secret)
    except TelegramSendError as exc:
        logger.critical(f"setWebhook failed: {exc}")
        return 1
    finally:
        await close_all_sessions()

    logger.info(f"Webhook set: {url} (secret={'yes' if settings.telegram_webhook_secret else 'no'})")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Register the Telegram webhook URL")
    parser.add_argument("url", help="Public HTTPS URL of POST /webhooks/telegram")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.url)))
