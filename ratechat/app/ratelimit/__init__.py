"""Token bucket rate limiting.

This package provides per-key admission control for named operations, with
in-memory and Redis bucket stores.
"""

from ratechat.app.ratelimit.models import (
    BucketConfig,
    BucketState,
    RateLimitDecision,
    apply_token_bucket,
)
from ratechat.app.ratelimit.store import (
    InMemoryTokenBucketStore,
    RedisTokenBucketStore,
    TokenBucketStore,
)
from ratechat.app.ratelimit.limiter import RateLimiter
from ratechat.app.ratelimit.sweeper import BucketSweeper

__all__ = [
    # Models
    "BucketConfig",
    "BucketState",
    "RateLimitDecision",
    "apply_token_bucket",
    # Stores
    "TokenBucketStore",
    "InMemoryTokenBucketStore",
    "RedisTokenBucketStore",
    # Limiter
    "RateLimiter",
    "BucketSweeper",
]
