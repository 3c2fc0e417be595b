"""Application settings and configuration."""

import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Booking Auth Core"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str  # development, staging, production, test

    # PostgreSQL
    postgres_url: str
    postgres_pool_size: int = 10
    postgres_max_overflow: int = 10
    postgres_pool_timeout: int = 2
    postgres_pool_recycle: int = 1800
    postgres_statement_timeout_ms: int = 30000
    postgres_echo: bool = False

    # Access tokens
    secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15

    # Refresh and reset tokens (hashed with their own key)
    refresh_secret_key: str
    refresh_token_expire_days: int = 7
    reset_token_expire_minutes: int = 30

    # Password hashing (Argon2 cost factor)
    password_hash_time_cost: int = 3
    password_hash_memory_cost: int = 65536
    password_hash_parallelism: int = 4

    # Transactions
    transaction_max_attempts: int = 3
    transaction_backoff_base: float = 0.1
    transaction_backoff_max: float = 2.0
    transaction_timeout: float = 10.0

    # Enumeration avoidance
    forgot_password_min_duration_ms: int = 250

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production", "test"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("transaction_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("transaction_max_attempts must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Access and refresh secrets must be independent and strong outside dev/test."""
        if self.environment in {"development", "test"}:
            return self

        if self.secret_key == self.refresh_secret_key:
            raise ValueError("secret_key and refresh_secret_key must differ")
        if len(self.secret_key) < 32 or len(self.refresh_secret_key) < 32:
            raise ValueError("secret_key and refresh_secret_key must be at least 32 characters")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()  # type: ignore[call-arg]
