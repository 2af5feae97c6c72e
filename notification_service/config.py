from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required
    DATABASE_URL: str

    # Logging Configuration - required
    LOG_LEVEL: str

    # Telegram Bot API
    BOT_TOKEN: str
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    TELEGRAM_TIMEOUT_SECONDS: float = 10.0
    TELEGRAM_POLL_TIMEOUT: int = 60
    TELEGRAM_POLLING_ENABLED: bool = True

    # Startup catalog files
    EVENTS_PATH: str = "./events.json"
    TEMPLATES_PATH: str = "./templates.json"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
