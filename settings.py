from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Dream journal API settings.

    Read once from the environment / .env at process start.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    SERVICE_NAME: str = "dreams-api"

    # --- MongoDB ---
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: str = "dreams"
    MONGO_TIMEOUT_MS: int = 5000

    # --- Tokens ---
    JWT_SECRET: str = "super-secret-key-change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRES_MIN: int = 60
    REFRESH_EXPIRES_DAYS: int = 30

    # --- HTTP ---
    PAGE_SIZE: int = 20
    CORS_ORIGINS: str = "*"  # comma-separated
    PORT: int = 8000

    LOG_LEVEL: str = "INFO"

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
