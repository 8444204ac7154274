import json
import re
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

if TYPE_CHECKING:
    from ratechat.app.ratelimit.models import BucketConfig

# Name of the one limited operation the chat service exposes
SEND_MESSAGE = "sendMessage"


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate comma/space separated values.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Message store
    database_url: str = "sqlite+aiosqlite:///./ratechat.db"
    database_echo: bool = False
    recent_messages_limit: int = 50
    max_message_length: int = 2000

    # Rate limiting backend: "memory" keeps buckets in-process,
    # "redis" shares them between every process pointing at the same server
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    rate_limit_key_prefix: str = "ratelimit"
    rate_limit_max_entries: int = 10000
    # Seconds between sweeps of buckets that have refilled to capacity
    rate_limit_cleanup_interval_seconds: float = 60.0
    redis_url: str = "redis://localhost:6379/0"

    # sendMessage policy: burst of 3, then one token every 6 seconds
    send_message_capacity: float = 3
    send_message_rate: float = 10
    send_message_period_seconds: float = 60.0

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "send_message_capacity",
        "send_message_rate",
        "send_message_period_seconds",
        "rate_limit_cleanup_interval_seconds",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: float) -> float:
        """Validate rate limit values are positive."""
        if v <= 0:
            raise ValueError("Rate limit values must be positive")
        return v

    @field_validator(
        "recent_messages_limit",
        "max_message_length",
        "rate_limit_max_entries",
    )
    @classmethod
    def validate_size_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    def rate_limit_configs(self) -> dict[str, "BucketConfig"]:
        """Build the named bucket policies served by the rate limiter."""
        from ratechat.app.ratelimit.models import BucketConfig

        return {
            SEND_MESSAGE: BucketConfig(
                capacity=self.send_message_capacity,
                rate=self.send_message_rate,
                period=self.send_message_period_seconds,
            ),
        }

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
