from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "LMS Promotions API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./promotions.db"

    # Security
    SECRET_KEY: str = "change-me-in-env"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Environment
    ENVIRONMENT: str = "development"

    DEBUG: bool = False

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Promotions
    DEFAULT_CURRENCY: str = "EGP"
    COUPON_PAGE_SIZE: int = 20
    FLASH_SALE_PAGE_SIZE: int = 20
    REDEMPTION_MAX_RETRIES: int = 3
    REDEMPTION_RETRY_DELAY_SECONDS: float = 0.05  # doubled per attempt
    REDEEM_RATE_LIMIT: str = "30/minute"
    PREVIEW_RATE_LIMIT: str = "60/minute"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("REDEMPTION_MAX_RETRIES")
    @classmethod
    def validate_retry_budget(cls, value: int) -> int:
        if value < 0:
            raise ValueError("REDEMPTION_MAX_RETRIES cannot be negative")
        return value

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "change-me" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
            if self.is_sqlite:
                raise ValueError("DATABASE_URL must point at a server database in production")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
