"""Application configuration loaded from environment variables."""

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import ConfigDict, computed_field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENV: str = "dev"
    DEBUG: bool = False

    # Database connection components
    # Defaults are for local development (outside Docker)
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 15432
    POSTGRES_USER: str = "devuser"
    POSTGRES_PASSWORD: str = "devpass"
    POSTGRES_DB: str = "fusion_automation_dev"

    # Allow DATABASE_URL to be set directly, or construct from components
    DATABASE_URL: str | None = None

    @computed_field  # type: ignore[misc]
    @property
    def database_url(self) -> str:
        """Get database URL, either from DATABASE_URL env var or construct from components."""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode credentials in case they contain special characters
        encoded_password = quote_plus(str(self.POSTGRES_PASSWORD), safe="")
        encoded_user = quote_plus(str(self.POSTGRES_USER), safe="")
        encoded_host = quote_plus(str(self.POSTGRES_HOST), safe="")
        encoded_db = quote_plus(str(self.POSTGRES_DB), safe="")
        return (
            f"postgresql+psycopg2://{encoded_user}:{encoded_password}"
            f"@{encoded_host}:{self.POSTGRES_PORT}/{encoded_db}"
        )

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Action pipeline retry policy (p-retry style: retries after the first attempt)
    AUTOMATION_MAX_RETRIES: int = 3
    AUTOMATION_RETRY_MIN_DELAY: float = 0.5  # seconds
    AUTOMATION_RETRY_FACTOR: float = 2.0
    AUTOMATION_RETRY_MAX_DELAY: float = 5.0  # seconds

    # Timeouts (seconds)
    AUTOMATION_ACTION_TIMEOUT: float = 30.0
    AUTOMATION_HISTORY_QUERY_TIMEOUT: float = 10.0

    # Time-of-day evaluation
    AUTOMATION_DEFAULT_TIMEZONE: str = "UTC"
    AUTOMATION_SUN_TIMES_MAX_AGE_DAYS: int = 7

    # In-memory event history bound (events kept for temporal conditions)
    AUTOMATION_HISTORY_MAX_EVENTS: int = 10000

    # Outbound HTTP actions
    HTTP_ACTION_USER_AGENT: str = "FusionBridge Automation/1.0"

    # Pushover push notifications
    PUSHOVER_ENABLED: bool = False
    PUSHOVER_API_URL: str = "https://api.pushover.net/1/messages.json"
    PUSHOVER_API_TOKEN: str = ""
    PUSHOVER_GROUP_KEY: str = ""

    model_config = ConfigDict(
        env_file=[".env", "../.env"],  # Try .env in current dir first, then parent dir
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env that are not in Settings
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
