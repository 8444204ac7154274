"""Named-policy rate limiter.

The limiter maps operation names to bucket policies and gates callers
through a ``TokenBucketStore``. It only decides admission; the caller performs
the gated action itself, so any operation can reuse the same gate.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Union

from ratechat.app.core.logging import get_log_context, get_logger
from ratechat.app.exceptions import RateLimitedError, UnknownLimitError
from ratechat.app.ratelimit.models import BucketConfig, RateLimitDecision
from ratechat.app.ratelimit.store import TokenBucketStore

logger = get_logger(__name__)

LimitPolicy = Union[BucketConfig, Mapping[str, Any]]


def _to_config(operation: str, policy: LimitPolicy) -> BucketConfig:
    # Redis keys are "<prefix>:<operation>:<key>"; a colon-free operation
    # keeps them unambiguous whatever the caller key contains
    if not operation or ":" in operation:
        raise ValueError(f"Invalid operation name {operation!r}: must be non-empty without ':'")
    if isinstance(policy, BucketConfig):
        return policy
    try:
        return BucketConfig(
            capacity=policy["capacity"],
            rate=policy["rate"],
            period=policy["period"],
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid rate limit config for {operation!r}: {e}") from e


class RateLimiter:
    """Per-key token bucket admission control for named operations.

    Example:
        >>> limiter = RateLimiter(
        ...     InMemoryTokenBucketStore(),
        ...     {"sendMessage": BucketConfig(capacity=3, rate=10, period=60)},
        ... )
        >>> await limiter.limit("sendMessage", "alice", throw_on_reject=True)
    """

    def __init__(
        self,
        store: TokenBucketStore,
        limits: Mapping[str, LimitPolicy],
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the limiter.

        Args:
            store: Bucket store, owned by the hosting service
            limits: Bucket policy per operation name; validated here so that
                misconfiguration fails at startup rather than per request
            clock: Time source, defaults to the store's own clock
        """
        self._store = store
        self._limits: Dict[str, BucketConfig] = {
            name: _to_config(name, policy) for name, policy in limits.items()
        }
        self._clock = clock or store.now

    @property
    def store(self) -> TokenBucketStore:
        return self._store

    @property
    def operations(self) -> list[str]:
        return sorted(self._limits)

    @property
    def limits(self) -> Dict[str, BucketConfig]:
        return dict(self._limits)

    def config_for(self, operation: str) -> BucketConfig:
        """Return the bucket policy for ``operation``.

        Raises:
            UnknownLimitError: If ``operation`` has no configured limit
        """
        config = self._limits.get(operation)
        if config is None:
            logger.error(
                f"No rate limit configured for {operation!r}",
                extra=get_log_context(operation=operation),
            )
            raise UnknownLimitError(operation)
        return config

    def _validate_cost(self, config: BucketConfig, cost: float) -> None:
        if cost < 0:
            raise ValueError(f"cost must not be negative, got {cost}")
        if cost > config.capacity:
            raise ValueError(
                f"cost {cost} exceeds bucket capacity {config.capacity} and could never be admitted"
            )

    async def limit(
        self,
        operation: str,
        key: str,
        *,
        cost: float = 1,
        throw_on_reject: bool = False,
    ) -> RateLimitDecision:
        """Try to admit one request for ``key``, consuming ``cost`` tokens.

        Args:
            operation: Name of the limited operation
            key: Caller identity the bucket is tracked per
            cost: Tokens the request consumes
            throw_on_reject: Raise instead of returning a rejected decision

        Returns:
            RateLimitDecision; callers using the non-throwing form must check
            ``admitted`` themselves

        Raises:
            UnknownLimitError: If ``operation`` has no configured limit
            RateLimitedError: If rejected and ``throw_on_reject`` is set
        """
        config = self.config_for(operation)
        self._validate_cost(config, cost)

        decision = await self._store.consume_or_reject(
            operation, key, config, cost=cost, now=self._clock()
        )
        if decision.admitted:
            return decision

        logger.info(
            f"Rate limited {operation} for {key}, retry in {decision.retry_after:.2f}s",
            extra=get_log_context(
                operation=operation, key=key, retry_after=decision.retry_after
            ),
        )
        if throw_on_reject:
            raise RateLimitedError(
                operation=operation, key=key, retry_after=decision.retry_after
            )
        return decision

    async def check(
        self,
        operation: str,
        key: str,
        *,
        cost: float = 1,
    ) -> RateLimitDecision:
        """Report whether ``limit`` would admit ``key`` now, without consuming."""
        config = self.config_for(operation)
        self._validate_cost(config, cost)
        return await self._store.peek(
            operation, key, config, cost=cost, now=self._clock()
        )

    async def reset(self, operation: str, key: str) -> None:
        """Refill ``key``'s bucket for ``operation`` to capacity."""
        self.config_for(operation)
        await self._store.reset(operation, key)
