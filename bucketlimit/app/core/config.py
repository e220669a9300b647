from typing import TYPE_CHECKING, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from bucketlimit.app.services.token_bucket.models import Policy


class Settings(BaseSettings):
    """Limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - raises the default log level to DEBUG so every decision is logged
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (in-memory store is used when disabled)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "ratelimit:"
    bucket_ttl_seconds: int = 0  # Expiry of idle LIMIT items, 0 = never

    # Default policy, used for identifiers without a SETTINGS item
    default_max_tokens: int = 60
    default_refill_rate: int = 1
    default_refill_interval: int = 1
    default_starting_tokens: Optional[int] = None  # None = start full

    # Commit loop settings
    limiter_max_attempts: int = 3
    limiter_backoff_base: float = 0.05  # Seconds
    limiter_backoff_cap: float = 1.0  # Seconds
    limiter_on_exhaustion: Literal["fail_open", "fail_closed"] = "fail_closed"

    # Policy cache settings
    policy_cache_ttl_seconds: float = 5.0  # 0 disables caching
    policy_cache_max_entries: int = 10000

    # HTTP middleware settings
    middleware_max_key_length: int = 512

    @property
    def default_policy(self) -> "Policy":
        """Build the process-wide default policy."""
        from bucketlimit.app.services.token_bucket.models import Policy

        return Policy(
            max_tokens=self.default_max_tokens,
            refill_rate=self.default_refill_rate,
            refill_interval=self.default_refill_interval,
            starting_tokens=self.default_starting_tokens,
        )

    @field_validator(
        "default_max_tokens",
        "default_refill_rate",
        "default_refill_interval",
        "limiter_max_attempts",
        "policy_cache_max_entries",
        "middleware_max_key_length",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts and intervals are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("limiter_backoff_base", "limiter_backoff_cap", "policy_cache_ttl_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate durations are not negative."""
        if v < 0:
            raise ValueError("durations must not be negative")
        return v

    @field_validator("bucket_ttl_seconds")
    @classmethod
    def validate_bucket_ttl(cls, v: int) -> int:
        """Validate bucket TTL is zero (disabled) or positive."""
        if v < 0:
            raise ValueError("bucket_ttl_seconds must be 0 or positive")
        return v

    @field_validator("default_starting_tokens")
    @classmethod
    def validate_starting_tokens(cls, v: Optional[int]) -> Optional[int]:
        """Validate starting tokens is not negative."""
        if v is not None and v < 0:
            raise ValueError("default_starting_tokens must not be negative")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is one of the supported formatters."""
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be text, structured or json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
