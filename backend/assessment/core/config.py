"""
Application configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal, Self


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Assessment Engine API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8081",
    ]

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/assessment_dev"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Security
    # Tokens are issued by the platform's auth service; this service only verifies them.
    JWT_SECRET_KEY: str = Field(
        default="change-me-in-production",
        repr=False,
        description="Shared JWT signing secret used to verify bearer tokens",
    )
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Scoring / certificates
    DEFAULT_PASSING_SCORE: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Passing percentage used when a test has no passing_score",
    )
    CERTIFICATE_VERIFY_BASE_URL: str = "http://localhost:8081"

    # Sandbox
    SANDBOX_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Wall-clock limit for a single test case run",
    )
    SANDBOX_MAX_CONCURRENCY: int = Field(
        default=4,
        ge=1,
        description="Maximum number of sandboxed processes running at once, server-wide",
    )
    SANDBOX_MAX_OUTPUT_BYTES: int = 64 * 1024
    SANDBOX_MEMORY_LIMIT_MB: int = 256
    SANDBOX_CPU_LIMIT_SECONDS: int = 5
    SANDBOX_MAX_PROCESSES: int = 64
    SANDBOX_MAX_TEST_CASES: int = 50
    # Judge code answers server-side right after intake
    SANDBOX_AUTO_JUDGE: bool = True
    SANDBOX_NODE_BINARY: str = "node"
    # "auto" picks bubblewrap when installed, otherwise util-linux unshare
    SANDBOX_ISOLATION: Literal["auto", "bwrap", "unshare"] = "auto"

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0, 0.1 = 10% of transactions)",
    )

    # OpenTelemetry metrics
    OTEL_SERVICE_NAME: str = "assessment-engine"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_sandbox_limits(self) -> Self:
        """CPU limit must leave room for the wall-clock timeout to fire first."""
        if self.SANDBOX_CPU_LIMIT_SECONDS < 1:
            raise ValueError("SANDBOX_CPU_LIMIT_SECONDS must be at least 1")
        if self.SANDBOX_MEMORY_LIMIT_MB < 16:
            raise ValueError(
                f"SANDBOX_MEMORY_LIMIT_MB must be at least 16, got {self.SANDBOX_MEMORY_LIMIT_MB}"
            )
        return self

    @model_validator(mode="after")
    def validate_production_secret(self) -> Self:
        """Refuse to boot production with the placeholder JWT secret."""
        if self.ENV == "production" and self.JWT_SECRET_KEY == "change-me-in-production":
            raise ValueError("JWT_SECRET_KEY must be set when ENV=production")
        return self


settings = Settings()
