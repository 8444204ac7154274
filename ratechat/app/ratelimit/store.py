"""Token bucket stores.

A store owns per-``(operation, key)`` bucket state and performs refill,
check and consume as one atomic step per bucket. Stores return
``RateLimitDecision`` values; turning a rejection into an error is the
limiter's job.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import redis
import redis.asyncio as aioredis

from ratechat.app.core.logging import get_log_context, get_logger
from ratechat.app.exceptions import StoreUnavailableError
from ratechat.app.ratelimit.models import (
    EPSILON,
    BucketConfig,
    BucketState,
    RateLimitDecision,
    apply_token_bucket,
)
from ratechat.app.ratelimit.redis_lua import TOKEN_BUCKET_SCRIPT

logger = get_logger(__name__)

BucketKey = Tuple[str, str]


class TokenBucketStore(ABC):
    """Abstract base class for token bucket stores."""

    def now(self) -> float:
        """Current time on the clock bucket timestamps are recorded against."""
        return time.monotonic()

    @abstractmethod
    async def consume_or_reject(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float = 1,
        now: Optional[float] = None,
    ) -> RateLimitDecision:
        """Refill the bucket, then take ``cost`` tokens if available.

        Args:
            operation: Name of the limited operation
            key: Caller identity the bucket is tracked per
            config: Bucket policy for ``operation``
            cost: Number of tokens to consume
            now: Timestamp on the store's clock, defaults to ``self.now()``

        Returns:
            RateLimitDecision, with ``retry_after`` when rejected
        """

    @abstractmethod
    async def peek(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float = 1,
        now: Optional[float] = None,
    ) -> RateLimitDecision:
        """Report what ``consume_or_reject`` would decide, without consuming."""

    @abstractmethod
    async def reset(self, operation: str, key: str) -> None:
        """Forget the bucket; the next request sees a full one."""

    async def cleanup(
        self,
        configs: Dict[str, BucketConfig],
        now: Optional[float] = None,
    ) -> int:
        """Drop bucket state that no longer affects admission.

        Returns:
            Number of buckets removed
        """
        return 0

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryTokenBucketStore(TokenBucketStore):
    """In-process token bucket store.

    Suitable for single-instance deployments. Each bucket has its own lock, so
    callers with different keys never contend.

    Memory optimization:
    - Uses OrderedDict for LRU behavior
    - Limits max entries; the oldest 20% of idle buckets are evicted when the
      limit is exceeded (an evicted bucket comes back full)
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._max_entries = max_entries
        self._buckets: OrderedDict[BucketKey, BucketState] = OrderedDict()
        self._locks: Dict[BucketKey, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def _lock_for(self, bucket_key: BucketKey) -> asyncio.Lock:
        lock = self._locks.get(bucket_key)
        if lock is None:
            lock = self._locks[bucket_key] = asyncio.Lock()
        return lock

    def _is_locked(self, bucket_key: BucketKey) -> bool:
        lock = self._locks.get(bucket_key)
        return lock is not None and lock.locked()

    def _forget(self, bucket_key: BucketKey) -> None:
        # Locks only exist for stored buckets, so the map stays within max_entries
        self._buckets.pop(bucket_key, None)
        if not self._is_locked(bucket_key):
            self._locks.pop(bucket_key, None)

    def _load(self, bucket_key: BucketKey, config: BucketConfig, now: float) -> BucketState:
        state = self._buckets.get(bucket_key)
        if state is None:
            return BucketState.full(config, now)
        self._buckets.move_to_end(bucket_key)
        return state

    def _save(self, bucket_key: BucketKey, state: BucketState) -> None:
        self._buckets[bucket_key] = state
        self._buckets.move_to_end(bucket_key)
        self._enforce_lru_limit()

    def _enforce_lru_limit(self) -> None:
        if len(self._buckets) <= self._max_entries:
            return
        remove_count = max(1, int(self._max_entries * 0.2))
        # Buckets whose lock is held are mid-update and stay put.
        evict = [
            bucket_key for bucket_key in self._buckets
            if not self._is_locked(bucket_key)
        ][:remove_count]
        for bucket_key in evict:
            self._forget(bucket_key)
        logger.debug(f"Evicted {len(evict)} idle buckets")

    async def consume_or_reject(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float = 1,
        now: Optional[float] = None,
    ) -> RateLimitDecision:
        bucket_key = (operation, key)
        async with self._lock_for(bucket_key):
            if now is None:
                now = self.now()
            state = self._load(bucket_key, config, now)
            decision = apply_token_bucket(state, config, cost, now)
            self._save(bucket_key, state)
            return decision

    async def peek(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float = 1,
        now: Optional[float] = None,
    ) -> RateLimitDecision:
        # Read-only on a copy, so no lock and no lock entry for unknown keys
        if now is None:
            now = self.now()
        current = self._buckets.get((operation, key))
        if current is None:
            state = BucketState.full(config, now)
        else:
            state = BucketState(current.tokens, current.last_refill_at)
        return apply_token_bucket(state, config, cost, now, consume=False)

    async def reset(self, operation: str, key: str) -> None:
        bucket_key = (operation, key)
        if bucket_key not in self._buckets:
            return
        async with self._lock_for(bucket_key):
            self._buckets.pop(bucket_key, None)
        self._forget(bucket_key)

    def get_state(self, operation: str, key: str) -> Optional[BucketState]:
        """Return a copy of the stored state, or None for an untouched bucket."""
        state = self._buckets.get((operation, key))
        if state is None:
            return None
        return BucketState(state.tokens, state.last_refill_at)

    async def cleanup(
        self,
        configs: Dict[str, BucketConfig],
        now: Optional[float] = None,
    ) -> int:
        """Drop buckets that have refilled to capacity.

        A full bucket is indistinguishable from a fresh one, so this never
        changes an admission outcome.

        Returns:
            Number of buckets removed
        """
        if now is None:
            now = self.now()
        removed = 0
        for bucket_key in list(self._buckets):
            config = configs.get(bucket_key[0])
            if config is None or self._is_locked(bucket_key):
                continue
            state = self._buckets[bucket_key]
            elapsed = max(0.0, now - state.last_refill_at)
            if state.tokens + elapsed / config.period * config.rate >= config.capacity - EPSILON:
                self._forget(bucket_key)
                removed += 1
        return removed


class RedisTokenBucketStore(TokenBucketStore):
    """Redis-backed token bucket store.

    Bucket state lives in one hash per ``(operation, key)`` and is updated by
    a Lua script, which Redis executes atomically. Every process sharing the
    server therefore sees one authoritative bucket. Timestamps use the wall
    clock, the only clock separate processes agree on.

    Redis failures surface as ``StoreUnavailableError``; a broken store never
    admits or rejects on its own.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: str = "ratelimit",
    ):
        """Initialize Redis token bucket store.

        Args:
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL, used when no client is given
            key_prefix: Prefix for bucket keys
        """
        if redis_client is None and redis_url is None:
            raise ValueError("RedisTokenBucketStore needs redis_client or redis_url")
        self._redis = redis_client
        self._redis_url = redis_url
        self._key_prefix = key_prefix

    def now(self) -> float:
        return time.time()

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _make_key(self, operation: str, key: str) -> str:
        if ":" in operation:
            raise ValueError(f"Operation name must not contain ':', got {operation!r}")
        return f"{self._key_prefix}:{operation}:{key}"

    async def _run_script(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float,
        now: Optional[float],
        consume: bool,
    ) -> RateLimitDecision:
        if now is None:
            now = self.now()
        redis_key = self._make_key(operation, key)
        try:
            result = await self._get_redis().eval(
                TOKEN_BUCKET_SCRIPT,
                1,
                redis_key,
                repr(float(config.capacity)),
                repr(float(config.rate)),
                repr(float(config.period)),
                repr(float(cost)),
                repr(float(now)),
                "1" if consume else "0",
                repr(EPSILON),
            )
        except redis.RedisError as e:
            logger.error(
                f"Redis token bucket script failed: {e}",
                extra=get_log_context(operation=operation, key=key),
            )
            raise StoreUnavailableError(f"Rate limit store unavailable: {e}") from e

        admitted, tokens, retry_after = result
        tokens = float(tokens)
        if int(admitted) == 1:
            return RateLimitDecision.admit(remaining=tokens)
        return RateLimitDecision.reject(retry_after=float(retry_after), remaining=tokens)

    async def consume_or_reject(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float = 1,
        now: Optional[float] = None,
    ) -> RateLimitDecision:
        return await self._run_script(operation, key, config, cost, now, consume=True)

    async def peek(
        self,
        operation: str,
        key: str,
        config: BucketConfig,
        cost: float = 1,
        now: Optional[float] = None,
    ) -> RateLimitDecision:
        return await self._run_script(operation, key, config, cost, now, consume=False)

    async def reset(self, operation: str, key: str) -> None:
        try:
            await self._get_redis().delete(self._make_key(operation, key))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Rate limit store unavailable: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._get_redis().ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
