from typing import Any

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables and ``.env``.
    """

    # API Configuration
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "LeadRelay Messaging Core"
    PROJECT_DESCRIPTION: str = "Resilient WhatsApp message delivery for the CRM"
    VERSION: str = "0.1.0"

    # WhatsApp API settings
    WHATSAPP_API_BASE: str = Field("https://graph.facebook.com", description="Base URL of the Graph API")
    WHATSAPP_API_VERSION: str = Field("v18.0", description="Graph API version")
    WHATSAPP_PHONE_NUMBER_ID: str = Field("", description="Business phone number ID used to send messages")
    WHATSAPP_ACCESS_TOKEN: str = Field("", description="Permanent access token for the Graph API")
    WHATSAPP_VERIFY_TOKEN: str = Field("", description="Token echoed back during webhook verification")
    META_APP_SECRET: str = Field("", description="App secret used to verify webhook signatures")
    WHATSAPP_HTTP_TIMEOUT: float = Field(10.0, description="Timeout in seconds for provider HTTP calls")

    # Rate limiting (per phone number, sliding window)
    RATE_LIMIT_MAX_REQUESTS: int = Field(10, description="Admissions per key per window")
    RATE_LIMIT_WINDOW_SECONDS: float = Field(60.0, description="Sliding window length in seconds")

    # Circuit breaker
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(5, description="Consecutive failures before opening")
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: float = Field(60.0, description="Seconds open before a trial call")

    # Retry / recovery
    RETRY_MAX_RETRIES: int = Field(3, description="Retries after the first attempt")
    RETRY_BASE_DELAY_MS: int = Field(1000, description="Delay before the first retry, doubled per retry")
    RETRY_MAX_DELAY_MS: int = Field(60_000, description="Upper bound of a single retry delay")
    RETRY_JITTER: bool = Field(False, description="Add random jitter to retry delays")

    # Health
    HEALTH_ERROR_RATE_THRESHOLD: float = Field(0.10, description="Error rate above which /health reports 503")

    # Webhook behaviour
    AUTO_RESPONSE_ENABLED: bool = Field(True, description="Reply automatically to greeting/help keywords")
    WEBHOOK_BACKGROUND_PROCESSING: bool = Field(
        False, description="Acknowledge webhooks immediately and process them in a background task"
    )
    WEBHOOK_PROCESSING_TIMEOUT_SECONDS: float = Field(
        30.0, description="Upper bound on processing one webhook delivery before it is acknowledged"
    )
    ERROR_REPLY_ENABLED: bool = Field(True, description="Apologise to senders whose message could not be processed")

    # Environment / logging
    ENVIRONMENT: str = Field("development", description="Deployment environment")
    DEBUG: bool = Field(False, description="Enable debug mode")
    LOG_LEVEL: str = Field("INFO", description="Root log level")
    LOG_FORMAT: str = Field("colored", description="Log format: colored, json or plain")
    LOG_FILE: str | None = Field(None, description="Optional JSON log file")
    SENTRY_DSN: str | None = Field(None, description="Sentry DSN; error tracking disabled when empty")

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def __init__(self, **data: Any):
        super().__init__(**data)

    @field_validator(
        "RATE_LIMIT_MAX_REQUESTS",
        "CIRCUIT_BREAKER_FAILURE_THRESHOLD",
    )
    @classmethod
    def validate_positive_int(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator(
        "RATE_LIMIT_WINDOW_SECONDS",
        "CIRCUIT_BREAKER_RECOVERY_TIMEOUT",
        "WHATSAPP_HTTP_TIMEOUT",
        "WEBHOOK_PROCESSING_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_positive_float(cls, v):
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("RETRY_MAX_RETRIES", "RETRY_BASE_DELAY_MS")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("must be 0 or greater")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("colored", "json", "plain"):
            raise ValueError("LOG_FORMAT must be one of: colored, json, plain")
        return v

    @computed_field
    @property
    def is_development(self) -> bool:
        return self.DEBUG or self.ENVIRONMENT.lower() in ["development", "dev", "local"]

    @computed_field
    @property
    def messages_url(self) -> str:
        return f"{self.WHATSAPP_API_BASE.rstrip('/')}/{self.WHATSAPP_API_VERSION}/{self.WHATSAPP_PHONE_NUMBER_ID}/messages"


_settings_instance = None


def get_settings() -> Settings:
    """
    Return the cached settings instance so the environment is read once.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
