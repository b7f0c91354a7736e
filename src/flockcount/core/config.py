"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:5173", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=5000, alias="PORT")

    # Vision analysis (OpenAI)
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    vision_model: str = Field(default="gpt-4o", alias="VISION_MODEL")
    analyze_timeout_seconds: float = Field(default=60.0, alias="ANALYZE_TIMEOUT_SECONDS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Fail fast when the vision provider is not configured.

        Validation is skipped in test environments so the app can be imported
        with a fake analyzer.
        """
        if self.app_env in ("test", "testing"):
            return self

        if not self.openai_api_key:
            raise ValueError(
                "CRITICAL: Missing required environment variables:\n\n"
                "  - OPENAI_API_KEY: Required for POST /api/analyze\n\n"
                "The application cannot start without these variables."
            )

        return self


class ClientSettings(BaseSettings):
    """Settings for the offline-first client library and CLI."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    server_url: str = Field(default="http://localhost:5000", alias="FLOCKCOUNT_SERVER_URL")
    state_dir: str = Field(default=".flockcount", alias="FLOCKCOUNT_STATE_DIR")

    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Connectivity probing
    health_timeout_seconds: float = Field(default=5.0, alias="HEALTH_TIMEOUT_SECONDS")
    health_interval_seconds: float = Field(default=30.0, alias="HEALTH_INTERVAL_SECONDS")

    # Analyze calls and retry policy
    analyze_timeout_seconds: float = Field(default=60.0, alias="ANALYZE_TIMEOUT_SECONDS")
    retry_max_attempts: int | None = Field(default=8, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=2.0, alias="RETRY_BASE_DELAY_SECONDS")
    retry_multiplier: float = Field(default=2.0, alias="RETRY_MULTIPLIER")
    retry_max_delay_seconds: float = Field(default=300.0, alias="RETRY_MAX_DELAY_SECONDS")


def configure_logging(settings: Settings | ClientSettings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer = structlog.processors.JSONRenderer()
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
