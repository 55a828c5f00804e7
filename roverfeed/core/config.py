from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = "logs"  # unset = stdout only
    LOG_JSON: bool = False  # one JSON object per line, for log shippers
    SLACK_WEBHOOK_URL: str | None = None

    # Scraper admin endpoints (unset = open, dev only)
    ADMIN_API_KEY: str | None = None

    # Upstream HTTP resilience
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_BACKOFF_BASE_SECONDS: float = 2.0
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_COOLDOWN_SECONDS: float = 60.0

    # Scheduled incremental scraping
    SCRAPER_ENABLED: bool = True
    SCRAPER_ACTIVE_SOURCES: list[str] = ["curiosity", "perseverance"]
    SCRAPER_LOOKBACK_WINDOWS: int = 7
    SCRAPER_RUN_AT_UTC_HOUR: int = 2
    SCRAPER_INTERVAL_HOURS: int = 24
    SCRAPER_WINDOW_DELAY_SECONDS: float = 0.5
    SCRAPER_SOURCE_DELAY_SECONDS: float = 2.0
    SCRAPER_STALE_RUN_SECONDS: int = 6 * 60 * 60  # in_progress older than this is considered crashed
    SCRAPER_ERROR_BACKOFF_SECONDS: int = 5 * 60

    # Rate limiting
    RATE_LIMIT_BACKEND: Literal["memory", "database"] = "memory"
    RATE_LIMIT_TIERS: dict[str, tuple[int, int]] | None = None  # overrides the built-in tier table

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development


settings = Settings()
