# lotbot/core/use_cases.py
"""
Application service: dispatch, bot commands and the access check.

Bot workflow per delivery:
    ignore (empty / non-operator) -> idempotency -> parse -> resolve lot
    -> transition -> confirm to actor -> notify other recipients
"""
from __future__ import annotations

import re

from lotbot.core import texts
from lotbot.core.access import AccessChecker
from lotbot.core.commands import (
    ApplyToDestination,
    ApplyToLot,
    Command,
    Help,
    UndoLatest,
    command_kind,
    parse_command,
)
from lotbot.core.domain import Destination, InboundDelivery, Lot
from lotbot.core.errors import InvalidTransition, NotFoundError, UpstreamError, ValidationError
from lotbot.core.formatter import DEFAULT_MAX_LENGTH, render_lot
from lotbot.core.lifecycle import LifecycleEngine
from lotbot.core.ports import AsyncDeliveryRepository, Messenger
from lotbot.core.routing import RoutingConfig, broadcast
from lotbot.infra.logging_config import get_logger, LogContext
from lotbot.infra.metrics import AppMetrics, inc_counter

logger = get_logger(__name__)

# "Lote: L261018-1432-K7QX" line of a rendered lot header
_REPLY_LOT_RE = re.compile(r"^Lote:\s*(L\d{6}-\d{4}-[A-Z0-9]{4})\b", re.IGNORECASE | re.MULTILINE)


def lot_code_from_reply(text: str | None) -> str | None:
    match = _REPLY_LOT_RE.search(text or "")
    return match.group(1).upper() if match else None


class LotBotService:
    """
    Use-case layer shared by the HTTP endpoint and the Telegram webhook.

    Every outward effect goes through a port, so tests run it against
    in-memory fakes.
    """

    def __init__(
        self,
        *,
        engine: LifecycleEngine,
        deliveries: AsyncDeliveryRepository,
        messenger: Messenger,
        routing: RoutingConfig,
        access: AccessChecker | None = None,
        default_destination: Destination = Destination.LIVE_GRATUITA,
        max_length: int = DEFAULT_MAX_LENGTH,
        tz_name: str = "America/Sao_Paulo",
    ) -> None:
        self.engine = engine
        self.deliveries = deliveries
        self.messenger = messenger
        self.routing = routing
        self.access = access
        self.default_destination = default_destination
        self.max_length = max_length
        self.tz_name = tz_name

    # ------------------------------------------------------------------
    # Dispatch (admin panel)
    # ------------------------------------------------------------------

    async def dispatch(self, destination_raw: str, questions: list[dict]) -> dict:
        """
        Create a lot from the admin selection and send it to every operator.

        Returns:
            ``{"ok": True, "lotCode", "destination", "messageCount"}``
        """
        destination = Destination.parse(destination_raw)
        if destination is None:
            raise ValidationError(f"Unknown destination: {destination_raw!r}")

        with AppMetrics.track_processing_time("dispatch"):
            lot = await self.engine.create_lot(destination, questions)
            chunks = render_lot(lot, max_length=self.max_length, tz_name=self.tz_name)

            operators = list(self.routing.operators)
            if not operators:
                logger.warning(f"Lot {lot.lot_code} created but no operators are configured")

            try:
                for chunk in chunks:
                    await broadcast(self.messenger, operators, chunk)
            except UpstreamError:
                LogContext(logger, lot_code=lot.lot_code).error(
                    "Lot stored as PENDING but the broadcast to operators failed"
                )
                raise

        LogContext(logger, lot_code=lot.lot_code).info(
            f"Lot dispatched: destination={destination.value}, "
            f"items={len(lot.items)}, messages={len(chunks)}, operators={len(operators)}"
        )
        return {
            "ok": True,
            "lotCode": lot.lot_code,
            "destination": destination.label,
            "messageCount": len(chunks),
        }

    # ------------------------------------------------------------------
    # Bot (messaging gateway webhook)
    # ------------------------------------------------------------------

    async def handle_delivery(self, delivery: InboundDelivery) -> dict:
        log_ctx = LogContext(logger, delivery_id=delivery.delivery_id, sender_id=delivery.sender_id)

        if not delivery.has_text():
            log_ctx.debug("Delivery without text, ignoring")
            return {"ok": True, "ignored": True}

        if not self.routing.is_operator(delivery.sender_id):
            log_ctx.info("Delivery from non-operator sender, ignoring")
            AppMetrics.ignored_sender()
            return {"ok": True, "ignored": True}

        if delivery.delivery_id:
            first_time = await self.deliveries.mark_processed(delivery.delivery_id, delivery.sender_id)
            if not first_time:
                AppMetrics.duplicate_delivery()
                return {"ok": True, "duplicate": True}
        else:
            # No provider id: cannot dedup, accepted as fresh
            log_ctx.debug("Delivery without id, dedup skipped")
            inc_counter("webhook_delivery_without_id")

        command = parse_command(delivery.text, self.default_destination)
        kind = command_kind(command)
        AppMetrics.command_received(kind)
        log_ctx.info(f"Command received: {kind}")

        with AppMetrics.track_processing_time(f"command_{kind}"):
            await self._execute(command, delivery, log_ctx)

        return {"ok": True, "command": kind, "replied": True}

    async def _execute(self, command: Command, delivery: InboundDelivery, log_ctx: LogContext) -> None:
        actor = delivery.sender_id

        if isinstance(command, Help):
            await self._reply(delivery, texts.help_text(command.reason))
            return

        try:
            if isinstance(command, UndoLatest):
                lot = await self.engine.latest_applied(command.destination)
                if lot is None:
                    await self._reply(delivery, texts.no_applied_lot(command.destination))
                    return
                log_ctx = log_ctx.bind(lot_code=lot.lot_code)
                reverted = await self.engine.undo(lot, actor)
                await self._reply(delivery, texts.reverted_confirmation(reverted))
                await self._notify(actor, texts.reverted_notice(reverted, actor))
                return

            if isinstance(command, ApplyToLot):
                lot = await self._get_lot(command.lot_code, delivery)
            else:
                lot = await self._resolve_for_destination(command, delivery)
                if lot is None:
                    await self._reply(delivery, texts.no_pending_lot(command.destination))
                    return
            if lot is None:
                return

            log_ctx = log_ctx.bind(lot_code=lot.lot_code)
            applied = await self.engine.apply(lot, command.url, actor)
            await self._reply(delivery, texts.applied_confirmation(applied))
            await self._notify(actor, texts.applied_notice(applied, actor))

        except InvalidTransition as exc:
            log_ctx.info(f"Rejected transition: lot is {exc.current}, needs {exc.required}")
            await self._reply(delivery, texts.invalid_transition(exc.lot_code, exc.current))

    async def _resolve_for_destination(
        self, command: ApplyToDestination, delivery: InboundDelivery
    ) -> Lot | None:
        """
        Latest pending lot of the destination; if there is none, the lot
        named in the ``Lote:`` line of the message being replied to.

        A named destination (``/live``, ``/despertos``) only accepts a
        replied-to lot of that same destination; the bare link follows
        the replied-to lot wherever it belongs.
        """
        lot = await self.engine.latest_pending(command.destination)
        if lot is not None:
            return lot

        code = lot_code_from_reply(delivery.reply_context_text)
        if code is None:
            return None

        try:
            lot = await self.engine.get(code)
        except NotFoundError:
            return None

        if command.explicit and lot.destination != command.destination:
            logger.info(
                f"Reply context {code} is a {lot.destination.value} lot, "
                f"command named {command.destination.value}; not used"
            )
            return None

        logger.debug(f"No pending lot for {command.destination.value}, using reply context {code}")
        return lot

    async def _get_lot(self, lot_code: str, delivery: InboundDelivery) -> Lot | None:
        """Fetch a lot by code; an unknown code is answered to the operator and yields None."""
        try:
            return await self.engine.get(lot_code)
        except NotFoundError:
            logger.info(f"Lot not found: {lot_code}")
            await self._reply(delivery, texts.lot_not_found(lot_code))
            return None

    async def _reply(self, delivery: InboundDelivery, text: str) -> None:
        await self.messenger.send_text(delivery.reply_chat_id, text)

    async def _notify(self, actor: str, text: str) -> None:
        await broadcast(self.messenger, self.routing.notice_recipients(actor), text)

    # ------------------------------------------------------------------
    # Premium access (Q&A front-end)
    # ------------------------------------------------------------------

    async def check_access(self, email: str | None, name: str | None = None, phone: str | None = None) -> dict:
        if self.access is None:
            raise UpstreamError("Access check is not configured")
        decision = await self.access.check(email, name=name, phone=phone)
        return {"ok": True, "allowed": decision.allowed, "source": decision.source}
