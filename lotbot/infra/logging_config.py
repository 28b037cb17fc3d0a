# lotbot/infra/logging_config.py
"""
Logging setup.

Production logs are one JSON object per line; development logs are
coloured single lines.  Both render the context fields attached through
``LogContext`` (request, delivery, sender, lot).
"""
import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("request_id", "delivery_id", "sender_id", "lot_code")


def mask_chat_id(chat_id: str) -> str:
    """``"123456789"`` -> ``"1234***"``"""
    chat_id = str(chat_id)
    return chat_id[:4] + "***" if len(chat_id) > 4 else "***"


def _record_context(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            **_record_context(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    LABELS = {"lot_code": "lot", "delivery_id": "delivery", "sender_id": "sender", "request_id": "req"}

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%H:%M:%S")

        context = _record_context(record)
        if "sender_id" in context:
            context["sender_id"] = mask_chat_id(context["sender_id"])
        tags = " ".join(f"{self.LABELS[k]}={v}" for k, v in context.items())

        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}"
        if tags:
            line += f" [{tags}]"
        line += f": {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """Install a single stdout handler on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy, noisy_level in (("uvicorn.access", logging.WARNING), ("botocore", logging.WARNING), ("urllib3", logging.WARNING)):
        logging.getLogger(noisy).setLevel(noisy_level)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """
    Logger adapter that stamps context fields onto every record.

        log_ctx = LogContext(logger, delivery_id="9001", sender_id="100")
        log_ctx = log_ctx.bind(lot_code=lot.lot_code)
        log_ctx.info("Lot applied")

    ``None`` values are dropped so formatters only render what is known.
    """

    def __init__(
            self,
            logger: logging.Logger,
            request_id: str | None = None,
            delivery_id: str | None = None,
            sender_id: str | None = None,
            lot_code: str | None = None,
    ):
        fields = {
            "request_id": request_id,
            "delivery_id": delivery_id,
            "sender_id": sender_id,
            "lot_code": lot_code,
        }
        super().__init__(logger, {k: v for k, v in fields.items() if v is not None})

    def bind(self, **fields: str | None) -> "LogContext":
        merged = {**self.extra, **{k: v for k, v in fields.items() if v is not None}}
        return LogContext(self.logger, **merged)

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs
