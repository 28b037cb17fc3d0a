# lotbot/infra/membership_webhook.py
"""
Client for the external membership webhook used by the premium-access check.

Contract: ``POST <access_webhook_url>`` with ``{"email": "..."}`` and an
optional bearer token; the webhook answers ``{"allowed": true|false}``.
"""
from __future__ import annotations

import asyncio

import aiohttp

from lotbot.config import settings
from lotbot.core.errors import UpstreamError
from lotbot.infra.http_client import membership_session
from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import inc_counter

logger = get_logger(__name__)


async def check_membership(email: str) -> bool:
    """
    Ask the membership webhook whether ``email`` has premium access.

    Raises:
        UpstreamError: webhook unreachable, non-2xx, or malformed body
    """
    if not settings.access_webhook_url:
        raise UpstreamError("Membership webhook is not configured")

    headers = {}
    if settings.access_webhook_token:
        headers["Authorization"] = f"Bearer {settings.access_webhook_token}"

    session = membership_session()
    try:
        async with session.post(
            settings.access_webhook_url,
            json={"email": email},
            headers=headers,
        ) as resp:
            if resp.status >= 300:
                inc_counter("membership_webhook_error", status=resp.status)
                raise UpstreamError(f"Membership webhook returned HTTP {resp.status}")
            try:
                body = await resp.json(content_type=None)
            except ValueError as exc:
                raise UpstreamError("Membership webhook returned a non-JSON body") from exc

    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.error(f"Membership webhook connection error: {exc!r}", exc_info=True)
        inc_counter("membership_webhook_connection_error")
        raise UpstreamError(f"Membership webhook unreachable: {exc.__class__.__name__}") from exc

    if not isinstance(body, dict) or not isinstance(body.get("allowed"), bool):
        raise UpstreamError("Membership webhook response has no boolean 'allowed'")

    return body["allowed"]
