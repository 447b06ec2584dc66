"""Configuration management using Pydantic Settings"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./ledger.db"

    # Service
    service_name: str = "ledger-core"
    log_level: str = "INFO"

    # Ledger rules
    overdraft_limit: Decimal = Decimal("10000")  # Soft cap, checked on debit expenses only
    transaction_max_attempts: int = 5

    # Scheduled jobs
    batch_size: int = 400  # Store ceiling is 500 operations per batch
    job_timeout_seconds: float = 540.0
    job_max_retries: int = 3
    job_backoff_base: float = 10.0  # Exponential backoff base in seconds
    job_backoff_max: float = 300.0


settings = Settings()
