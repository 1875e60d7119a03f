"""Worker settings - consistent with API settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings - consistent with API settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "festos"
    postgres_password: str = "festos_dev_password"
    postgres_db: str = "festos"
    postgres_port: int = 5432

    # Redis (broker, result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Reconciliation schedule
    consistency_check_interval_minutes: int = 60
    auto_sync_enabled: bool = False

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
