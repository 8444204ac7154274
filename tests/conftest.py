"""Shared fixtures for the ratechat test suite."""

import pytest

from ratechat.app.core.config import Settings
from ratechat.app.ratelimit.models import BucketConfig

# sendMessage policy used throughout: burst of 3, one token every 6 seconds
SEND_CONFIG = BucketConfig(capacity=3, rate=10, period=60.0)


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file, ignoring any .env."""
    db_path = tmp_path / "ratechat_test.db"
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        rate_limit_backend="memory",
    )
