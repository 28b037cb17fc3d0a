# lotbot/core/errors.py
"""
Typed domain errors for lot dispatch and the command bot.

Each error maps to a specific HTTP status code.  The transport layer
catches ``BotError`` subtypes and converts them to JSON responses
without embedding business logic in the route handlers.  In the bot
flow, ``NotFoundError`` and ``InvalidTransition`` are turned into plain
text replies to the operator instead.
"""
from __future__ import annotations


class BotError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(BotError):
    """Malformed request (400). No state change."""

    status_code = 400


class UnauthorizedError(BotError):
    """Missing or wrong dispatch token (401)."""

    status_code = 401


class NotFoundError(BotError):
    """Unknown lot or question (404)."""

    status_code = 404


class InvalidTransition(BotError):
    """Lot is not in the state the operation requires (409)."""

    status_code = 409

    def __init__(self, lot_code: str, current: str, required: str):
        self.lot_code = lot_code
        self.current = current
        self.required = required
        super().__init__(
            f"Lot {lot_code} is {current}, expected {required}"
        )


class LotCodeCollision(BotError):
    """Generated lot code already exists (409). Retryable with a new code."""

    status_code = 409


class UpstreamError(BotError):
    """Messaging gateway, lot storage or question store failure (500)."""

    status_code = 500

    def __init__(
        self,
        detail: str,
        *,
        completed: list[int] | None = None,
        pending: list[int] | None = None,
    ):
        self.completed = completed or []
        self.pending = pending or []
        super().__init__(detail)
