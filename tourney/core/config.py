"""
Application Configuration for the Tournament Backend
"""
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

# Get the project root directory (where .env file is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database Configuration
    DATABASE_HOST: str = "localhost"
    DATABASE_PORT: int = 5432
    DATABASE_NAME: str = "tournaments"
    DATABASE_USERNAME: str = "postgres"
    DATABASE_PASSWORD: str = "postgres"  # Default for development
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Full URL override (e.g. sqlite:///./tournaments.db for local runs)
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        """Construct database URL from components"""
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return (
            f"postgresql://{self.DATABASE_USERNAME}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8393
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Tournament API"
    DEBUG: bool = True

    # CORS Configuration
    ALLOWED_ORIGINS: str = "*"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from string"""
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    # Environment
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SETTLEMENT_INTERVAL_SECONDS: int = 300  # every 5 minutes
    SETTLEMENT_MAX_WORKERS: int = 1
    SETTLEMENT_BACKOFF_BASE_SECONDS: int = 30
    SETTLEMENT_BACKOFF_MAX_SECONDS: int = 1800
    ACTIVATION_INTERVAL_SECONDS: int = 60

    # Payouts to the payment network
    PAYOUT_TRANSFERS_ENABLED: bool = False
    PAYOUT_INTERVAL_SECONDS: int = 120
    PAYOUT_MAX_ATTEMPTS: int = 5
    PAYOUT_RETRY_BASE_SECONDS: int = 60
    PAYOUT_BATCH_SIZE: int = 50

    # Payment gateway: 'simulated' or 'http'
    PAYMENT_GATEWAY: str = "simulated"
    PAYMENT_API_URL: str = "https://payments.example.com"
    PAYMENT_API_KEY: str = ""
    PAYMENT_API_TIMEOUT_SECONDS: float = 30.0
    PAYMENT_CURRENCY: str = "TON"

    # Tournament defaults
    DEFAULT_PLATFORM_FEE_PERCENT: Decimal = Decimal("10")
    DEFAULT_PRIZE_DISTRIBUTION: Dict[int, Decimal] = Field(
        default_factory=lambda: {1: Decimal("50"), 2: Decimal("30"), 3: Decimal("20")}
    )
    LEADERBOARD_MAX_LIMIT: int = 100

    # Rate limiting for attempt submissions
    ATTEMPT_RATE_LIMIT: str = "120/minute"

    @field_validator("PAYMENT_GATEWAY")
    @classmethod
    def _known_gateway(cls, value: str) -> str:
        value = value.lower()
        if value not in ("simulated", "http"):
            raise ValueError("PAYMENT_GATEWAY must be 'simulated' or 'http'")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once from the environment"""
    return Settings()
