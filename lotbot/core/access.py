# lotbot/core/access.py
"""
Premium-access check for the Q&A front-end.

Membership sources are tried in a fixed order and the first one that
grants access wins:

1. ``allow_all``  – global switch (launch promos, testing)
2. ``allow_list`` – static list of e-mails from settings
3. ``webhook``    – external membership service

Every check is recorded as a lead, allowed or not.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Awaitable, Callable

from lotbot.core.errors import ValidationError
from lotbot.core.ports import AsyncLeadRepository
from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import AppMetrics

logger = get_logger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(raw: str | None) -> str:
    email = (raw or "").strip().lower()
    if not email or len(email) > 254 or not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email")
    return email


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    source: str  # allow_all | allow_list | webhook | none


class AccessChecker:
    def __init__(
        self,
        *,
        leads: AsyncLeadRepository,
        allow_all: bool = False,
        allow_list: set[str] | None = None,
        webhook: Callable[[str], Awaitable[bool]] | None = None,
    ) -> None:
        self.leads = leads
        self.allow_all = allow_all
        self.allow_list = {e.lower() for e in (allow_list or set())}
        self.webhook = webhook

    async def check(self, email: str, name: str | None = None, phone: str | None = None) -> AccessDecision:
        email = normalize_email(email)
        decision = await self._resolve(email)

        await self.leads.record_access_check(
            email=email,
            allowed=decision.allowed,
            source=decision.source,
            name=(name or "").strip() or None,
            phone=(phone or "").strip() or None,
        )

        AppMetrics.access_checked(decision.source, decision.allowed)
        logger.info(f"Access check: allowed={decision.allowed}, source={decision.source}")
        return decision

    async def _resolve(self, email: str) -> AccessDecision:
        if self.allow_all:
            return AccessDecision(True, "allow_all")
        if email in self.allow_list:
            return AccessDecision(True, "allow_list")
        if self.webhook is not None:
            allowed = await self.webhook(email)
            return AccessDecision(allowed, "webhook")
        return AccessDecision(False, "none")
