"""Exponential backoff with full jitter for provider calls."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from vaultrag.embedding.encoder import is_retryable

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    attempts: int = 5
    starting_delay: float = 1.0
    multiplier: float = 1.5
    max_delay: float = 60.0

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Full-jitter delay before retry number ``attempt`` (1-based)."""
        ceiling = min(self.max_delay, self.starting_delay * self.multiplier ** (attempt - 1))
        return (rng or random).uniform(0, ceiling)


def retry_with_backoff(
    func: Callable[[], T],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds, retrying errors accepted by ``retryable``.

    The last error is re-raised once ``policy.attempts`` calls have failed, or
    immediately when the error is not retryable.
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return func()
        except Exception as exc:
            if attempt >= policy.attempts or not retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            LOGGER.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs", attempt, policy.attempts, exc, delay
            )
            if on_retry is not None:
                on_retry(exc, attempt, delay)
            sleep(delay)
            attempt += 1
