from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Database
    database_url: str = Field(
        ..., description="Database connection URL (postgresql+asyncpg://...)"
    )
    db_pool_size: int = Field(default=10, description="Database connection pool size")
    db_max_overflow: int = Field(default=20, description="Database max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Database pool timeout in seconds")
    db_pool_recycle: int = Field(default=3600, description="Database connection recycle time in seconds")

    # Salesforce OAuth
    sf_client_id: str = Field(..., description="Connected app client id")
    sf_client_secret: str = Field(..., description="Connected app client secret")
    sf_refresh_token: str = Field(..., description="OAuth refresh token")
    sf_login_url: str = Field(
        default="https://login.salesforce.com", description="Token issuer base URL"
    )
    sf_api_version: str = Field(default="60.0", description="REST API version")
    sf_token_ttl_seconds: int = Field(
        default=600,
        description="Assumed access token lifetime; shorter than the real session timeout",
    )
    sf_token_skew_seconds: int = Field(
        default=60, description="Seconds subtracted from the assumed token lifetime"
    )
    sf_request_timeout_s: float = Field(
        default=30.0, description="Timeout for issuer and API calls in seconds"
    )

    # Queue / worker pool
    queue_name: str = Field(default="barry-jobs", description="Queue consumed by the worker")
    worker_concurrency: int = Field(default=5, ge=1, description="Concurrent job slots")
    job_poll_interval_ms: int = Field(default=1000, description="Idle poll interval")
    job_default_max_attempts: int = Field(
        default=3, ge=1, description="Delivery attempts before a job is dead-lettered"
    )
    job_backoff_base_ms: int = Field(default=2000, description="Base retry backoff")
    job_max_backoff_s: int = Field(default=300, description="Retry backoff cap")
    job_visibility_timeout_s: int = Field(
        default=300, description="Heartbeat age after which a running job is redelivered"
    )
    job_heartbeat_interval_s: int = Field(default=30, description="Heartbeat interval")
    job_remove_on_complete: bool = Field(
        default=True, description="Delete jobs from the queue table once completed"
    )

    def model_post_init(self, __context) -> None:
        """Validate settings after initialization."""
        if self.sf_token_skew_seconds <= 0:
            raise ValueError("SF_TOKEN_SKEW_SECONDS must be greater than zero")
        if self.sf_token_skew_seconds >= self.sf_token_ttl_seconds:
            raise ValueError(
                f"SF_TOKEN_SKEW_SECONDS ({self.sf_token_skew_seconds}) must be smaller "
                f"than SF_TOKEN_TTL_SECONDS ({self.sf_token_ttl_seconds})"
            )
        if self.job_heartbeat_interval_s >= self.job_visibility_timeout_s:
            raise ValueError(
                "JOB_HEARTBEAT_INTERVAL_S must be smaller than JOB_VISIBILITY_TIMEOUT_S"
            )


@lru_cache
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
