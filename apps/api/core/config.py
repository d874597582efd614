"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API, the worker and the
serverless entrypoint.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins over the POSTGRES_* parts when set (tests use sqlite://).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="endurance_ingest")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis / Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Strava API Configuration
    STRAVA_CLIENT_ID: Optional[str] = Field(default=None)
    STRAVA_CLIENT_SECRET: Optional[str] = Field(default=None)
    STRAVA_API_BASE: str = Field(default="https://www.strava.com/api/v3")
    STRAVA_OAUTH_URL: str = Field(default="https://www.strava.com/oauth")
    # Summary listing page size; a shorter page ends pagination.
    STRAVA_PAGE_SIZE: int = Field(default=200, ge=1, le=200)

    # Public base URL of this service, used to build OAuth redirect and webhook callback URLs.
    API_BASE_URL: str = Field(default="http://localhost:8000")

    # Token Encryption
    TOKEN_ENCRYPTION_KEY: Optional[str] = Field(default=None)

    # Credential refresh happens when a token expires within this window.
    TOKEN_REFRESH_BUFFER_S: int = Field(default=300)

    # Webhook handshake tokens are single-use and live this long.
    WEBHOOK_VERIFICATION_TTL_S: int = Field(default=300)

    # Historical backfill
    BACKFILL_WINDOW_MONTHS: int = Field(default=48, ge=1)

    # Reconciliation sweep: raw rows older than this with no canonical pass are re-enqueued.
    RECONCILE_GRACE_MINUTES: int = Field(default=30)
    RECONCILE_BATCH_SIZE: int = Field(default=500)

    # Tag extraction style: "hashtag" (#word) or "bracket" ([word])
    TAG_STYLE: str = Field(default="hashtag", pattern="^(hashtag|bracket)$")

    # Queueing: "celery" (redis broker) or "sqs" (FIFO queues)
    QUEUE_BACKEND: str = Field(default="celery", pattern="^(celery|sqs)$")
    HISTORICAL_DATA_QUEUE_URL: Optional[str] = Field(default=None)
    POST_PROCESSING_QUEUE_URL: Optional[str] = Field(default=None)

    # Object storage
    AWS_S3_BUCKET_NAME: Optional[str] = Field(default=None)
    AWS_REGION: str = Field(default="us-east-1")

    # Shared secret for read-only athlete endpoints (x-api-key header)
    API_KEY: Optional[str] = Field(default=None)

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
