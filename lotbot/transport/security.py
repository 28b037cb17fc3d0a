# lotbot/transport/security.py
"""
Request authentication helpers.

- Dispatch requests: ``Authorization: Bearer <DISPATCH_TOKEN>`` when a
  token is configured (the admin panel holds it).
- Telegram webhook: ``X-Telegram-Bot-Api-Secret-Token`` when a secret is
  configured (Telegram echoes the value given to setWebhook).
- ``/metrics``: ``Authorization: Bearer <METRICS_TOKEN>`` when configured.

All comparisons are constant-time.
"""
from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lotbot.config import settings
from lotbot.core.errors import UnauthorizedError
from lotbot.infra.logging_config import get_logger
from lotbot.infra.metrics import AppMetrics

logger = get_logger(__name__)

metrics_bearer_scheme = HTTPBearer(auto_error=False)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_dispatch_token(request: Request) -> None:
    """
    Raises:
        UnauthorizedError: token configured and missing or wrong
    """
    if not settings.dispatch_token:
        return

    token = _bearer_token(request)
    if not token:
        logger.warning("Dispatch request without bearer token")
        raise UnauthorizedError("Authentication required")

    if not hmac.compare_digest(token, settings.dispatch_token):
        logger.warning(
            "Invalid dispatch token attempt",
            extra={"token_prefix": token[:4] if len(token) >= 4 else "***"}
        )
        raise UnauthorizedError("Invalid credentials")


def verify_telegram_secret(request: Request) -> bool:
    """
    Verify X-Telegram-Bot-Api-Secret-Token header.
    Returns True if valid or if secret token verification is disabled.
    """
    if not settings.telegram_webhook_secret:
        return True

    header_token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not header_token:
        logger.warning("Telegram webhook: missing X-Telegram-Bot-Api-Secret-Token header")
        return False

    return hmac.compare_digest(header_token, settings.telegram_webhook_secret)


def require_telegram_secret(request: Request) -> None:
    if not verify_telegram_secret(request):
        logger.error("Telegram webhook: secret token verification failed")
        AppMetrics.webhook_validation_failed("telegram")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid secret token")


def require_metrics_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
):
    """
    Dependency for ``/metrics``.

    Open when METRICS_TOKEN is not set; otherwise requires
    ``Authorization: Bearer <METRICS_TOKEN>``.
    """
    if not settings.metrics_token:
        return

    if not credentials:
        logger.warning("Metrics endpoint accessed without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
        logger.warning("Invalid metrics token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Sanitize error messages for external responses.
    In production: Generic messages
    In dev: Detailed messages
    """
    if not is_production:
        return str(error)

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "PostgresError": "Service temporarily unavailable",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(type(error).__name__, "An error occurred")
