from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Redis settings
    redis_url: str = "redis://localhost:6379/0"

    # Rate limiter settings
    rate_limiter_key_prefix: str = "request_rate_limiter"
    rate_limiter_timeout_seconds: float = 1.0  # Per-call store round-trip timeout

    # Default rule applied by the HTTP middleware
    rate_limit_replenish_rate: float = 1.0  # Tokens added per second
    rate_limit_burst_capacity: float = 10.0  # Bucket size

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_replenish_rate", "rate_limit_burst_capacity")
    @classmethod
    def validate_rate_limit_positive(cls, v: float) -> float:
        """Validate rate limit values are positive."""
        if v <= 0:
            raise ValueError("Rate limit values must be positive")
        return v

    @field_validator("rate_limiter_timeout_seconds")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("rate_limiter_timeout_seconds must be positive")
        return v

    @field_validator("rate_limiter_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("rate_limiter_key_prefix must not be empty")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
