# lotbot/infra/http_client.py
"""
Shared aiohttp sessions, one per outbound peer.

- ``telegram``   Bot API calls: total 25 s, connect 5 s, up to 20 connections
- ``membership`` access-check webhook: total ``ACCESS_WEBHOOK_TIMEOUT_SECONDS``,
  connect 5 s, up to 5 connections

Sessions are created lazily on first use (inside the running loop) and
closed together by ``close_all_sessions()`` at shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from lotbot.config import settings
from lotbot.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionProfile:
    total: float
    connect: float
    limit: int


def _profiles() -> dict[str, SessionProfile]:
    return {
        "telegram": SessionProfile(total=25, connect=5, limit=20),
        "membership": SessionProfile(total=settings.access_webhook_timeout_seconds, connect=5, limit=5),
    }


_sessions: dict[str, aiohttp.ClientSession] = {}


def session_for(name: str) -> aiohttp.ClientSession:
    """Return the live session for ``name``, (re)creating it if needed."""
    session = _sessions.get(name)
    if session is not None and not session.closed:
        return session

    profile = _profiles()[name]
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=profile.total, connect=profile.connect),
        connector=aiohttp.TCPConnector(limit=profile.limit, keepalive_timeout=30),
        raise_for_status=False,
    )
    _sessions[name] = session
    logger.debug(f"HTTP session created: {name} (limit={profile.limit}, total={profile.total}s)")
    return session


def telegram_session() -> aiohttp.ClientSession:
    return session_for("telegram")


def membership_session() -> aiohttp.ClientSession:
    return session_for("membership")


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug(f"HTTP session closed: {name}")
