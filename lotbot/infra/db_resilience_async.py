# lotbot/infra/db_resilience_async.py
"""
Retry for idempotent asyncpg reads and writes.

Only wrap statements that are safe to run twice (SELECTs, UPDATEs that
set absolute values).  Never the delivery dedup insert.
"""
from __future__ import annotations

import asyncio
from functools import wraps
from typing import Callable

import asyncpg

from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import inc_counter

logger = get_logger(__name__)

TRANSIENT_TYPES = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.TooManyConnectionsError,
    asyncpg.DeadlockDetectedError,
    asyncpg.SerializationError,
    asyncpg.CannotConnectNowError,
    OSError,
    asyncio.TimeoutError,
)

TRANSIENT_MESSAGES = ("connection", "timeout", "closed", "network", "deadlock", "too many connections")


def is_transient_error(exc: BaseException) -> bool:
    """True when retrying the same statement could succeed."""
    if isinstance(exc, TRANSIENT_TYPES):
        return True
    if isinstance(exc, asyncpg.PostgresError):
        message = str(exc).lower()
        return any(fragment in message for fragment in TRANSIENT_MESSAGES)
    return False


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0,
):
    """
    Retry an async function up to ``max_retries`` extra times on transient
    database errors, with exponential backoff.  Other errors propagate
    immediately.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc) or attempt >= max_retries:
                        if attempt:
                            logger.error(f"{func.__name__} failed after {attempt + 1} attempts: {exc!r}")
                        raise

                    delay = min(initial_delay * backoff_factor ** attempt, max_delay)
                    attempt += 1
                    inc_counter("db_retries_total", operation=func.__name__)
                    logger.warning(
                        f"Transient database error in {func.__name__} "
                        f"(retry {attempt}/{max_retries} in {delay:.2f}s): {exc!r}"
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
