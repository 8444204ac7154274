import pytest
from pydantic import ValidationError

from ratechat.app.core.config import SEND_MESSAGE, Settings
from ratechat.app.ratelimit.models import BucketConfig


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.rate_limit_backend == "memory"
    assert settings.rate_limit_configs() == {
        SEND_MESSAGE: BucketConfig(capacity=3, rate=10, period=60.0),
    }


def test_send_message_policy_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SEND_MESSAGE_CAPACITY", "5")
    monkeypatch.setenv("SEND_MESSAGE_RATE", "1")
    monkeypatch.setenv("SEND_MESSAGE_PERIOD_SECONDS", "2.5")

    config = Settings(_env_file=None).rate_limit_configs()[SEND_MESSAGE]
    assert config == BucketConfig(capacity=5, rate=1, period=2.5)


@pytest.mark.parametrize(
    "field",
    [
        "send_message_capacity",
        "send_message_rate",
        "send_message_period_seconds",
        "rate_limit_cleanup_interval_seconds",
    ],
)
def test_rate_limit_values_must_be_positive(field: str) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})


def test_unknown_backend_rejected(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "memcached")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_log_format_normalized() -> None:
    assert Settings(_env_file=None, log_format="JSON").log_format == "json"
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_format="xml")


def test_cors_origins_accepts_comma_separated(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost:5173, http://chat.example.com")

    settings = Settings(_env_file=None)
    assert settings.cors_origins == ["http://localhost:5173", "http://chat.example.com"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["http://localhost:5173"]', ["http://localhost:5173"]),
        ("*", ["*"]),
        ("[]", []),
        ("", []),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected
