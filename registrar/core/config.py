from functools import lru_cache
from typing import Any, List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="registrar", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Google sign-in (university accounts)
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_hosted_domain: str = Field(default="", alias="GOOGLE_HOSTED_DOMAIN")

    # PayMongo
    paymongo_secret_key: str = Field(default="", alias="PAYMONGO_SECRET_KEY")
    paymongo_base_url: str = Field(default="https://api.paymongo.com/v1", alias="PAYMONGO_BASE_URL")
    paymongo_webhook_secret: str = Field(default="", alias="PAYMONGO_WEBHOOK_SECRET")
    paymongo_livemode: bool = Field(default=False, alias="PAYMONGO_LIVEMODE")
    paymongo_success_url: str = Field(
        default="http://localhost:5173/document-requests/{request_number}/payment/success",
        alias="PAYMONGO_SUCCESS_URL",
    )
    paymongo_cancel_url: str = Field(
        default="http://localhost:5173/document-requests/{request_number}",
        alias="PAYMONGO_CANCEL_URL",
    )
    paymongo_timeout_seconds: float = Field(default=15.0, alias="PAYMONGO_TIMEOUT_SECONDS")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Pricing (pesos per copy)
    regular_unit_price: int = Field(default=50, alias="REGULAR_UNIT_PRICE")
    rush_unit_price: int = Field(default=100, alias="RUSH_UNIT_PRICE")
    regular_turnaround_days: int = Field(default=5, alias="REGULAR_TURNAROUND_DAYS")
    rush_turnaround_days: int = Field(default=2, alias="RUSH_TURNAROUND_DAYS")

    # Document requests
    payment_deadline_hours: int = Field(default=48, alias="PAYMENT_DEADLINE_HOURS")
    document_request_daily_limit: int = Field(default=5, alias="DOCUMENT_REQUEST_DAILY_LIMIT")
    max_document_quantity: int = Field(default=10, alias="MAX_DOCUMENT_QUANTITY")
    # What a paid webhook does for a request whose deadline already passed
    late_payment_policy: Literal["reject", "reinstate"] = Field(default="reject", alias="LATE_PAYMENT_POLICY")

    # Webhook retry sweep
    webhook_max_attempts: int = Field(default=10, alias="WEBHOOK_MAX_ATTEMPTS")
    webhook_reprocess_batch: int = Field(default=50, alias="WEBHOOK_REPROCESS_BATCH")


@lru_cache
def get_settings() -> Settings:
    return Settings()
