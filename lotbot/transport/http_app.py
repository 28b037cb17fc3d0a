# lotbot/transport/http_app.py
"""
HTTP application.

Endpoints:
1. ``POST /bot`` (also ``POST /``): single bot endpoint, discriminated by body
   - ``{"action": "CHECK_ACCESS", ...}``            premium-access check
   - ``{"destination"|"selectionTarget", "questions"}`` lot dispatch (bearer token)
   - ``{"update_id", ...}``                         raw Telegram Update
   - ``{"sender": {"id"}, "text", ...}``            normalized webhook delivery
2. ``POST /webhooks/telegram``: Telegram-native webhook (secret token)
3. ``GET /health``, ``GET /metrics`` (metrics token)

Every JSON response carries ``ok``.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

import pydantic
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from lotbot.config import settings
from lotbot.core.access import AccessChecker
from lotbot.core.domain import Destination
from lotbot.core.errors import BotError, ValidationError
from lotbot.core.lifecycle import LifecycleEngine
from lotbot.core.routing import RoutingConfig
from lotbot.core.use_cases import LotBotService
from lotbot.infra.db_async import close_pool, init_pool
from lotbot.infra.http_client import close_all_sessions
from lotbot.infra.logging_config import setup_logging, get_logger
from lotbot.infra.metrics import get_metrics_collector
from lotbot.infra.migrations_async import validate_schema_version
from lotbot.infra.pg_delivery_repo_async import AsyncPostgresDeliveryRepository
from lotbot.infra.pg_lead_repo_async import AsyncPostgresLeadRepository
from lotbot.infra.pg_question_repo_async import AsyncPostgresQuestionRepository
from lotbot.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from lotbot.transport.schemas import AccessCheckIn, DeliveryIn, DispatchIn
from lotbot.transport.security import (
    require_metrics_auth,
    require_telegram_secret,
    sanitize_error_message,
    verify_dispatch_token,
)
from lotbot.transport.telegram_sender import TelegramMessenger
from lotbot.transport.telegram_webhook import handle_telegram_update, telegram_webhook_handler

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

def build_service(lot_store) -> LotBotService:
    """Assemble the bot service from settings and production adapters."""
    engine = LifecycleEngine(
        lots=lot_store,
        questions=AsyncPostgresQuestionRepository(),
        target_statuses=settings.destination_statuses(),
        code_attempts=settings.lot_code_attempts,
    )

    webhook = None
    if settings.access_webhook_url:
        from lotbot.infra.membership_webhook import check_membership
        webhook = check_membership

    access = AccessChecker(
        leads=AsyncPostgresLeadRepository(),
        allow_all=settings.access_allow_all,
        allow_list=settings.access_emails,
        webhook=webhook,
    )

    return LotBotService(
        engine=engine,
        deliveries=AsyncPostgresDeliveryRepository(),
        messenger=TelegramMessenger(),
        routing=RoutingConfig.from_settings(),
        access=access,
        default_destination=Destination(settings.default_destination),
        max_length=settings.message_max_length,
        tz_name=settings.display_timezone,
    )


def get_service(request: Request) -> LotBotService:
    """Get bot service from app state"""
    return request.app.state.service


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    await init_pool()
    logger.info("Database pool initialized")

    # Validate schema version (does NOT run migrations)
    # Migrations should be run separately: python -m lotbot.infra.migrate
    try:
        schema_result = await validate_schema_version()
        logger.info(f"Schema validated: {schema_result['current_version']}")
    except Exception:
        logger.critical(
            "Schema validation failed. Run migrations first: python -m lotbot.infra.migrate",
            exc_info=True
        )
        await close_pool()
        raise

    from lotbot.infra.s3_lot_store import get_lot_store
    lot_store = get_lot_store()
    lot_store.ensure_bucket()

    fastapi_app.state.service = build_service(lot_store)

    routing = fastapi_app.state.service.routing
    logger.info(
        f"Bot ready: operators={len(routing.operators)}, notify={len(routing.notify)}, "
        f"default_destination={settings.default_destination}"
    )

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Lot Bot",
    description="Question lot dispatch and operator command bot",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

# CORS: the Q&A front-end calls the bot endpoint from the browser
if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(BotError)
async def bot_error_handler(request: Request, exc: BotError):
    """Typed domain errors -> ``{"ok": false, "error": ...}`` with their status code"""
    if exc.status_code >= 500:
        logger.error(f"Request failed: {exc.__class__.__name__}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# BOT ENDPOINT
# ============================================================================

def _parse(model: type[pydantic.BaseModel], body: dict):
    try:
        return model.model_validate(body)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid request: {problems}") from exc


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def bot_endpoint(request: Request, service: LotBotService = Depends(get_service)):
    """
    Single bot endpoint - PUBLIC, authenticated per action.

    Dispatch requires the dispatch token (when configured); raw Telegram
    Updates and normalized deliveries require the webhook secret (when
    configured).
    """
    body = await _read_json(request)

    if body.get("action") == "CHECK_ACCESS":
        data = _parse(AccessCheckIn, body)
        return await service.check_access(data.email, name=data.name, phone=data.phone)

    if "action" in body:
        raise ValidationError(f"Unknown action: {body['action']!r}")

    if "update_id" in body:
        require_telegram_secret(request)
        request_id = getattr(request.state, "request_id", None)
        return await handle_telegram_update(body, service, request_id)

    if "questions" in body or "destination" in body or "selectionTarget" in body:
        verify_dispatch_token(request)
        data = _parse(DispatchIn, body)
        return await service.dispatch(data.destination, [q.model_dump() for q in data.questions])

    if "sender" in body:
        require_telegram_secret(request)
        data = _parse(DeliveryIn, body)
        return await service.handle_delivery(data.to_inbound())

    raise ValidationError("Unrecognized request")


app.add_api_route("/bot", bot_endpoint, methods=["POST"])
app.add_api_route("/", bot_endpoint, methods=["POST"], include_in_schema=False)


@app.post("/webhooks/telegram")
async def webhook_telegram(request: Request):
    """
    Telegram Bot API webhook endpoint - PUBLIC but VALIDATED.

    Point the bot here with ``python -m lotbot.transport.set_webhook``.
    """
    return await telegram_webhook_handler(request)


# ============================================================================
# OPS ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Basic health check - PUBLIC endpoint."""
    return {"ok": True, "status": "ok"}


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """In-process counters and histograms (METRICS_TOKEN when configured)."""
    return {"ok": True, **get_metrics_collector().get_metrics()}
