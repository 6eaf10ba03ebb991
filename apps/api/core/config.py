"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application,
including the tunable scoring thresholds of the evaluation pipeline.
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
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="assessments")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full URL override (e.g. "sqlite:///./assessments.db" for local runs)
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Cache Configuration
    CACHE_TTL_DEFAULT: int = Field(default=300)  # 5 minutes

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Integrity risk ladder (composite score thresholds, inclusive lower bounds)
    INTEGRITY_LOW_RISK_THRESHOLD: float = Field(default=85, ge=0, le=100)
    INTEGRITY_MEDIUM_RISK_THRESHOLD: float = Field(default=70, ge=0, le=100)
    INTEGRITY_HIGH_RISK_THRESHOLD: float = Field(default=55, ge=0, le=100)

    # Integrity composite weights (must sum to 1.0)
    INTEGRITY_WEIGHT_TAMPERING: float = Field(default=0.25)
    INTEGRITY_WEIGHT_MOVEMENT: float = Field(default=0.30)
    INTEGRITY_WEIGHT_ENVIRONMENT: float = Field(default=0.15)
    INTEGRITY_WEIGHT_BIOMETRIC: float = Field(default=0.20)
    INTEGRITY_WEIGHT_TEMPORAL: float = Field(default=0.10)

    # Integrity flag thresholds
    EXERCISE_COMPLIANCE_THRESHOLD: float = Field(default=70)
    IDENTITY_CONFIDENCE_THRESHOLD: float = Field(default=70)
    TAMPERING_CONFIDENCE_THRESHOLD: float = Field(default=0.7, ge=0, le=1)

    # Pipeline execution
    BATCH_CONCURRENCY: int = Field(default=5, ge=1)
    BATCH_DELAY_S: float = Field(default=1.0, ge=0)
    PROGRESS_GRACE_S: int = Field(default=60)  # keep finished runs readable for late pollers

    # Recruitment notification gate (quorum of high-performance signals)
    NOTIFY_MIN_CONDITIONS: int = Field(default=3, ge=1, le=4)
    NOTIFY_SCORE_THRESHOLD: float = Field(default=85)
    NOTIFY_PERCENTILE_THRESHOLD: float = Field(default=95)

    # Recruitment system transport (log-only when unset)
    RECRUITMENT_ALERT_URL: Optional[str] = Field(default=None)
    RECRUITMENT_API_KEY: Optional[str] = Field(default=None)
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

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
