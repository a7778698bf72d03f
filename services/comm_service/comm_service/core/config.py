"""
Core configuration settings for the communication service.
Handles environment variables, Redis, JWT, outbound service URLs and channel credentials.
"""

from typing import Dict, List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    # Application Configuration
    app_name: str = Field(default="comm-service")
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    base_url: str = Field(default="http://localhost:8080")

    # CORS Configuration
    allowed_origins: List[str] = Field(default=["*"])

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379")
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)
    redis_socket_timeout: int = Field(default=5)
    redis_socket_connect_timeout: int = Field(default=5)

    # JWT Configuration
    jwt_secret_key: str = Field(default="your-super-secret-jwt-key")
    jwt_algorithm: str = Field(default="HS256")
    jwt_issuer: str = Field(default="comm-service")
    jwt_audience: List[str] = Field(
        default=[
            "comm-service",
            "trading-service",
            "financial-service",
            "ai-service",
            "memory-service",
        ]
    )
    service_token_expire_minutes: int = Field(default=60)
    magic_link_ttl: int = Field(default=300)  # seconds

    # Outbound services (keys are service names without the "-service" suffix)
    service_urls: Dict[str, str] = Field(
        default={
            "trading": "http://trading-service:3000",
            "financial": "http://financial-service:3000",
            "ai": "http://ai-service:3000",
            "memory": "http://memory-service:3000",
        }
    )
    webhook_timeout: float = Field(default=5.0)  # seconds

    # Dispatch lifecycle
    dispatch_default_ttl: int = Field(default=300)
    dispatch_result_ttl: int = Field(default=86400)
    retry_delay_seconds: float = Field(default=5.0)

    # Idempotency
    idempotency_ttl: int = Field(default=86400)
    idempotency_lock_ttl: int = Field(default=30)

    # Verification
    verification_default_ttl: int = Field(default=600)
    verification_max_attempts: int = Field(default=3)
    verification_attempts_ttl: int = Field(default=600)
    verification_marker_ttl: int = Field(default=86400)

    # Telegram Configuration
    telegram_bot_token: Optional[str] = Field(default=None)
    telegram_api_base: str = Field(default="https://api.telegram.org")
    telegram_webhook_secret: Optional[str] = Field(default=None)
    admins_telegram_ids: str = Field(default="")

    # Email Configuration
    email_from: str = Field(default="noreply@comm-service.local")
    admin_email: Optional[str] = Field(default=None)
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)

    # Observability
    otel_enabled: bool = Field(default=False)

    @property
    def admin_chat_ids(self) -> List[int]:
        """Parse ADMINS_TELEGRAM_IDS (comma separated) keeping configured order."""
        ids: List[int] = []
        for raw in self.admins_telegram_ids.split(","):
            raw = raw.strip()
            if raw.lstrip("-").isdigit():
                ids.append(int(raw))
        return ids

    def get_service_url(self, service: str) -> Optional[str]:
        """Look up the base URL for a target service ("trading-service" -> "trading")."""
        key = service[: -len("-service")] if service.endswith("-service") else service
        return self.service_urls.get(key)


# Create global settings instance
settings = Settings()


def validate_settings(current: Settings = settings):
    """Validate that critical settings are properly configured."""
    if current.jwt_secret_key == "your-super-secret-jwt-key":
        raise ValueError("JWT_SECRET_KEY must be set to a secure value in production")

    if current.telegram_bot_token is not None and not current.telegram_webhook_secret:
        raise ValueError("TELEGRAM_WEBHOOK_SECRET must be set when Telegram is enabled")


# Validate settings on import (only in production)
if settings.environment == "production":
    validate_settings()
