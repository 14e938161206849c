# /queuebot/config/settings.py

import sys
from typing import List
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB
    mongo_atlas_uri: str
    mongo_database: str = "queuebot"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # Redis
    redis_url: str = "redis://localhost:6379"

    # UltraMsg (WhatsApp provider)
    ultramsg_instance_id: str | None = None
    ultramsg_token: str | None = None
    ultramsg_base_url: str = "https://api.ultramsg.com"
    ultramsg_webhook_enabled: bool = True
    ultramsg_webhook_token: str | None = None
    ultramsg_timeout_seconds: float = 10.0

    # Outbound notifications
    whatsapp_enabled: bool = True
    whatsapp_debug: bool = False
    # Separate ticket_created notification besides the conversational reply
    send_ticket_created_notification: bool = False

    # Queue behaviour
    default_service_minutes: int = 15
    analytics_window_days: int = 30
    template_cache_ttl: int = 300

    # Security
    api_key: str | None = None

    # Deployment
    workers: int = 4
    environment: str = "production"

    cors_allowed_origins: str = ""
    allowed_hosts: str = "*"

    # Observability
    alerting_webhook_url: str | None = None

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 100

    # ---------------- Validators ---------------- #

    @field_validator("ultramsg_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("default_service_minutes")
    @classmethod
    def service_minutes_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("DEFAULT_SERVICE_MINUTES must be a positive number of minutes")
        return v

    @model_validator(mode="after")
    def normalize_environment(self):
        self.environment = self.environment.lower()
        return self

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def ultramsg_configured(self) -> bool:
        return bool(self.ultramsg_instance_id and self.ultramsg_token)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            if settings_obj.whatsapp_enabled and not settings_obj.ultramsg_configured:
                raise ValueError("ULTRAMSG_INSTANCE_ID and ULTRAMSG_TOKEN are required when WHATSAPP_ENABLED is set")
            if settings_obj.ultramsg_webhook_enabled and not settings_obj.ultramsg_webhook_token:
                print("--- [WARNING] ULTRAMSG_WEBHOOK_TOKEN is not set; inbound webhooks are unauthenticated")

        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
