import json
from typing import List, Literal, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "PayComplete Relay"
    env: str = "dev"
    api_prefix: str = "/api"

    # PAYSTACK
    paystack_secret_key: str | None = None
    paystack_base_url: str = "https://api.paystack.co"
    paystack_currency: str = Field(default="NGN", min_length=3, max_length=3)
    paystack_callback_url: str | None = None
    paystack_callback_path: str = "/paycomplete.html"

    # TELEGRAM
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    telegram_api_base_url: str = "https://api.telegram.org"

    # MAILERLITE
    mailerlite_api_key: str | None = None
    mailerlite_group_id: str | None = None
    mailerlite_base_url: str = "https://connect.mailerlite.com/api"

    # SMTP
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender_email: str | None = None
    smtp_reply_to_email: str | None = None
    smtp_use_starttls: bool = True
    smtp_use_ssl: bool = False

    # PRODUCT / FULFILLMENT
    product_title: str = "Digital Course"
    product_sku: str = "DIGITAL_COURSE"
    product_access_url: str | None = None
    fetchapp_key: str | None = None
    fetchapp_token: str | None = None
    fetchapp_host: str | None = None

    # OUTBOUND + FAN-OUT
    http_timeout_seconds: float = Field(default=8.0, gt=0, le=30)
    fanout_max_workers: int = Field(default=4, ge=1, le=64)
    fanout_required_collaborators: List[str] = Field(default_factory=list)

    # IDEMPOTENCY
    idempotency_backend: Literal["memory", "database"] = "memory"
    idempotency_commit_policy: Literal["on_attempt", "on_required_success"] = "on_attempt"
    database_url: str = "sqlite:///./paycomplete.db"
    db_pool_size: int = Field(default=5, ge=1, le=100)
    db_max_overflow: int = Field(default=10, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # RATE LIMITING
    initialize_rate_limit_requests: int = Field(default=30, ge=1)
    initialize_rate_limit_window_seconds: int = Field(default=60, ge=1)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", "fanout_required_collaborators", mode="before")
    @classmethod
    def assemble_string_list(cls, v: Union[str, List[str], None]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("List settings given as JSON must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "paystack_secret_key",
        "paystack_callback_url",
        "telegram_bot_token",
        "telegram_chat_id",
        "mailerlite_api_key",
        "mailerlite_group_id",
        "smtp_host",
        "smtp_username",
        "smtp_password",
        "smtp_sender_email",
        "smtp_reply_to_email",
        "product_access_url",
        "fetchapp_key",
        "fetchapp_token",
        "fetchapp_host",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("paystack_currency", mode="after")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        if not self.is_production:
            return self

        if not self.paystack_secret_key:
            raise ValueError("PAYSTACK_SECRET_KEY is required in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        if self.smtp_use_ssl and self.smtp_use_starttls:
            raise ValueError("Set only one of SMTP_USE_SSL or SMTP_USE_STARTTLS in production")

        return self

    @property
    def is_production(self) -> bool:
        return self.env.lower().strip() in {"prod", "production"}

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def mailerlite_configured(self) -> bool:
        return bool(self.mailerlite_api_key and self.mailerlite_group_id)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_sender_email and self.product_access_url)

    @property
    def fetchapp_configured(self) -> bool:
        return bool(self.fetchapp_key and self.fetchapp_token and self.fetchapp_host)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
