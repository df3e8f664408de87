from typing import Optional

from pydantic_settings import BaseSettings

from orderdesk.logging_config import get_logger

logger = get_logger("config")

REQUIRED_SETTINGS = (
    "database_url",
    "admin_token",
    "ecomanager_webhook_secret",
    "maystro_webhook_secret",
)
MIN_PRODUCTION_SECRET_LENGTH = 32


class Settings(BaseSettings):
    database_url: str = ""
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 0.5
    environment: str = "development"
    log_level: str = "INFO"

    admin_token: str = ""
    ecomanager_webhook_secret: str = ""
    maystro_webhook_secret: str = ""

    cors_origin: str = "http://localhost:3000"
    rate_limit_window_ms: int = 900000
    rate_limit_max_requests: int = 100

    agent_online_threshold_minutes: int = 15
    assignable_roles: str = "AGENT_SUIVI"
    auto_assign_limit: int = 1000

    maystro_base_url: str = "https://backend.maystro-delivery.com"
    ecomanager_base_url: str = ""
    ecomanager_api_token: Optional[str] = None
    ecomanager_store_identifier: str = "default"
    ecomanager_max_pages: int = 50
    http_timeout_seconds: float = 30.0
    provider_max_retries: int = 3
    provider_retry_backoff_seconds: float = 1.0
    sync_batch_size: int = 100
    sync_max_orders: int = 5000
    corrupted_tracking_number: str = "1762961157040242"

    scheduler_enabled: bool = False
    scheduler_interval_seconds: float = 300.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def assignable_role_list(self) -> list[str]:
        return [role.strip().upper() for role in self.assignable_roles.split(",") if role.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]


def collect_settings_errors(config: Settings) -> list[str]:
    errors = [f"{name.upper()} is required" for name in REQUIRED_SETTINGS if not getattr(config, name)]

    if config.is_production:
        for name in ("admin_token", "ecomanager_webhook_secret", "maystro_webhook_secret"):
            value = getattr(config, name)
            if value and len(value) < MIN_PRODUCTION_SECRET_LENGTH:
                errors.append(
                    f"{name.upper()} must be at least {MIN_PRODUCTION_SECRET_LENGTH} characters in production"
                )
        if config.database_url and not config.database_url.startswith(("postgresql://", "postgresql+")):
            errors.append("DATABASE_URL must be a PostgreSQL connection string in production")

    if config.auto_assign_limit <= 0:
        errors.append("AUTO_ASSIGN_LIMIT must be positive")
    if config.sync_batch_size <= 0:
        errors.append("SYNC_BATCH_SIZE must be positive")
    if not config.assignable_role_list:
        errors.append("ASSIGNABLE_ROLES must name at least one role")
    return errors


def validate_settings(config: Optional[Settings] = None) -> Settings:
    """Check startup configuration, exiting the process when it is unusable."""
    config = config or settings
    errors = collect_settings_errors(config)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise SystemExit(1)

    if not config.ecomanager_api_token:
        logger.warning("ECOMANAGER_API_TOKEN not set, order ingestion is disabled")
    if not config.cors_origin_list:
        logger.warning("CORS_ORIGIN is empty, browser clients will be rejected")
    return config


settings = Settings()
