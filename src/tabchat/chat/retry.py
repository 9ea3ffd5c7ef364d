"""Retry policy for stream connection attempts."""

import random

from pydantic import BaseModel, ConfigDict, Field

from ..config import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_MAX_ATTEMPTS,
    ChatConfig,
)
from ..errors import RateLimitedError


class RetryPolicy(BaseModel):
    """Capped exponential backoff with jitter.

    Only errors flagged ``retryable`` are retried, and only until
    ``max_attempts`` attempts (the first one included) have been made.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    backoff_base: float = Field(default=DEFAULT_BACKOFF_BASE, ge=0.0)
    backoff_max: float = Field(default=DEFAULT_BACKOFF_MAX, ge=0.0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0, description="Max extra delay as a fraction")

    @classmethod
    def from_config(cls, config: ChatConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
        )

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Whether a failed attempt number ``attempt`` (1-based) may be repeated."""
        return bool(getattr(error, "retryable", False)) and attempt < self.max_attempts

    def delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Seconds to wait after failed attempt number ``attempt``.

        A server-provided Retry-After wins over the computed curve, still
        capped at ``backoff_max``.
        """
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return min(error.retry_after, self.backoff_max)
        delay = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        return delay + random.uniform(0, delay * self.jitter)
