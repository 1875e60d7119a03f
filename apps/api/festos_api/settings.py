"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (relational store)
    database_url: Optional[str] = None
    postgres_user: str = "festos"
    postgres_password: str = "festos_dev_password"
    postgres_db: str = "festos"
    postgres_port: int = 5432
    database_statement_timeout_ms: int = 3000  # Fast path; fallback activates after this

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # MinIO / S3 (content-addressed store)
    minio_endpoint: str = "localhost:9000"
    minio_access_key: Optional[str] = None  # Required in non-dev
    minio_secret_key: Optional[str] = None  # Required in non-dev
    minio_bucket: str = "festos-content"
    minio_use_ssl: bool = False
    content_put_max_attempts: int = 3
    content_put_backoff_seconds: float = 0.5

    # Ledger (EVM chain)
    ledger_rpc_url: str = "https://api.avax-test.network/ext/bc/C/rpc"
    ledger_indexer_url: str = "http://localhost:8100"
    ledger_contract_address: Optional[str] = None  # Required in non-dev
    ledger_chain_id: int = 43113
    ledger_confirm_timeout_seconds: float = 120.0
    ledger_poll_interval_seconds: float = 5.0
    ledger_required_confirmations: int = 1
    ledger_request_timeout_seconds: float = 10.0

    # Health monitor
    health_degraded_after_failures: int = 3
    health_down_after_failures: int = 3  # Additional failures once degraded
    health_recover_after_successes: int = 3
    health_state_backend: str = "memory"  # memory, redis
    alert_response_time_ms: int = 5000
    alert_error_rate_percent: float = 5.0
    consistency_check_interval_minutes: int = 60
    consistency_batch_size: int = 100

    # Event validation bounds
    event_min_capacity: int = 1
    event_max_capacity: int = 1_000_000

    # Environment
    environment: str = "development"

    # Logging
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if not self.minio_access_key or not self.minio_secret_key:
                raise ValueError(
                    "MINIO_ACCESS_KEY and MINIO_SECRET_KEY are required in production. "
                    "Do not use default credentials."
                )
            if not self.ledger_contract_address:
                raise ValueError(
                    "LEDGER_CONTRACT_ADDRESS is required outside development."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
