# lotbot/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    display_timezone: str = "America/Sao_Paulo"  # Dates in outbound lot headers

    # Database (hosted Postgres holding the questions table)
    expected_schema_version: str = "002_add_access_leads.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pg_pool_min: int = 1
    pg_pool_max: int = 10
    delivery_ttl_days: int = 30  # Dedup rows older than this are trimmed by cleanup

    # Lot storage (S3-compatible bucket, one JSON object per lot)
    s3_endpoint_url: str | None = None  # e.g., https://<project>.supabase.co/storage/v1/s3 or MinIO
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str = "auto"
    s3_force_path_style: bool = True
    lot_bucket_name: str | None = None
    lot_key_prefix: str = "lots/"

    # Security
    allowed_origins: list[str] = ["*"]
    dispatch_token: str | None = None  # Bearer token for dispatch requests from the admin panel
    metrics_token: str | None = None

    # Telegram (messaging gateway)
    telegram_bot_token: str | None = None  # Bot token from @BotFather
    telegram_webhook_secret: str | None = None  # Secret token for webhook validation (X-Telegram-Bot-Api-Secret-Token)

    # Routing
    # Comma-separated Telegram chat ids.
    # Operators receive every dispatched lot and are the only senders allowed to issue commands.
    operator_chat_ids: str = ""
    # Notification recipients receive apply/undo notices.
    notify_chat_ids: str = ""

    # Lifecycle
    default_destination: Literal["LIVE_GRATUITA", "DESPERTOS"] = "LIVE_GRATUITA"  # Target of a bare link
    live_gratuita_status: str = "ANSWERED"
    despertos_status: str = "PREMIUM"
    message_max_length: int = 3800  # Telegram hard limit is 4096
    lot_code_attempts: int = 5

    # Premium access check
    # Resolution order: allow-all flag -> static allow-list -> membership webhook
    access_allow_all: bool = False
    access_allow_list: str = ""  # Comma-separated e-mails
    access_webhook_url: str | None = None
    access_webhook_token: str | None = None
    access_webhook_timeout_seconds: int = 10

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def operator_ids(self) -> list[str]:
        return _split_csv(self.operator_chat_ids)

    @property
    def notify_ids(self) -> list[str]:
        return _split_csv(self.notify_chat_ids)

    @property
    def access_emails(self) -> set[str]:
        return {email.lower() for email in _split_csv(self.access_allow_list)}

    @property
    def s3_enabled(self) -> bool:
        """Check if lot storage is configured"""
        return bool(
            self.s3_endpoint_url
            and self.s3_access_key
            and self.s3_secret_key
            and self.lot_bucket_name
        )

    def destination_statuses(self) -> dict[str, str]:
        """Question status each destination assigns on apply."""
        return {
            "LIVE_GRATUITA": self.live_gratuita_status,
            "DESPERTOS": self.despertos_status,
        }

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("database_url", self.database_url),
            ("telegram_bot_token", self.telegram_bot_token),
            ("operator_chat_ids", self.operator_ids),
            ("lot_bucket_name", self.lot_bucket_name),
        ]

        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if not s.dispatch_token:
        warnings.append("dispatch_token is not set (anyone reaching the endpoint can dispatch lots).")

    if not s.telegram_webhook_secret:
        warnings.append("telegram_webhook_secret is not set (Telegram updates and normalized deliveries are not authenticated).")

    if not s.operator_ids:
        warnings.append("operator_chat_ids is empty: lots cannot be broadcast and every command will be ignored.")

    if not s.s3_enabled:
        warnings.append("Lot storage is not configured (S3_ENDPOINT_URL / keys / LOT_BUCKET_NAME).")

    if s.access_allow_all:
        warnings.append("access_allow_all=True: every e-mail is granted premium access.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
