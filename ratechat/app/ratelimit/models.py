"""Rate limiting data models.

This module contains the bucket policy, per-key bucket state, the decision
returned for each admission check, and the token bucket arithmetic shared by
every store.
"""

from dataclasses import dataclass
from typing import Optional

# Absorbs float drift so a retry at exactly ``now + retry_after`` is admitted
EPSILON = 1e-9


@dataclass(frozen=True)
class BucketConfig:
    """Token bucket policy for one named operation.

    Attributes:
        capacity: Maximum tokens a bucket can hold (burst allowance)
        rate: Tokens restored per ``period``
        period: Seconds over which ``rate`` tokens accrue, continuously
    """
    capacity: float
    rate: float
    period: float

    def __post_init__(self) -> None:
        for name in ("capacity", "rate", "period"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not value > 0:
                raise ValueError(f"{name} must be positive, got {value!r}")

    @property
    def tokens_per_second(self) -> float:
        return self.rate / self.period

    def seconds_until(self, tokens_needed: float) -> float:
        """Seconds of refill needed to accrue ``tokens_needed`` tokens."""
        return max(0.0, tokens_needed) / self.rate * self.period


@dataclass
class BucketState:
    """Token bucket state for one ``(operation, key)`` pair."""
    tokens: float
    last_refill_at: float

    @classmethod
    def full(cls, config: BucketConfig, now: float) -> "BucketState":
        return cls(tokens=float(config.capacity), last_refill_at=now)

    def refill(self, config: BucketConfig, now: float) -> None:
        # A clock stepping backwards adds nothing and never rewinds the bucket.
        elapsed = now - self.last_refill_at
        if elapsed > 0:
            self.tokens = min(
                float(config.capacity),
                self.tokens + elapsed / config.period * config.rate,
            )
            self.last_refill_at = now
        self.tokens = min(float(config.capacity), max(0.0, self.tokens))

    def is_full(self, config: BucketConfig) -> bool:
        return self.tokens >= config.capacity - EPSILON


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    Either admitted (no ``retry_after``) or rejected with ``retry_after > 0``,
    the seconds until enough tokens will have accrued. ``remaining`` is the
    token count left in the bucket after the check.
    """
    admitted: bool
    retry_after: Optional[float] = None
    remaining: float = 0.0

    def __post_init__(self) -> None:
        if self.admitted and self.retry_after is not None:
            raise ValueError("an admitted decision carries no retry_after")
        if not self.admitted and (self.retry_after is None or self.retry_after <= 0):
            raise ValueError("a rejected decision needs a positive retry_after")

    @classmethod
    def admit(cls, remaining: float) -> "RateLimitDecision":
        return cls(admitted=True, remaining=remaining)

    @classmethod
    def reject(cls, retry_after: float, remaining: float = 0.0) -> "RateLimitDecision":
        return cls(admitted=False, retry_after=max(retry_after, EPSILON), remaining=remaining)


def apply_token_bucket(
    state: BucketState,
    config: BucketConfig,
    cost: float,
    now: float,
    consume: bool = True,
) -> RateLimitDecision:
    """Refill ``state`` to ``now``, then try to take ``cost`` tokens.

    The refill is applied to ``state`` whether or not the request is admitted,
    so partial refill is never lost. Tokens are only taken when ``consume`` is
    true.
    """
    state.refill(config, now)
    if state.tokens >= cost - EPSILON:
        if consume:
            state.tokens = max(0.0, state.tokens - cost)
        return RateLimitDecision.admit(remaining=state.tokens)
    return RateLimitDecision.reject(
        retry_after=config.seconds_until(cost - state.tokens),
        remaining=state.tokens,
    )
