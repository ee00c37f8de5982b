"""Bounded retry with exponential backoff for upstream calls.

Every call to the Question Source or the Equivalence Oracle goes through
``call_with_backoff``: a fixed number of attempts, exponentially growing
waits capped at ``max_delay``, and a hard ``deadline_seconds`` ceiling on the
whole operation. When the budget is exhausted the last error is wrapped in
``UpstreamUnavailable`` so callers see one typed failure instead of a hang.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import httpx

from attempt_engine.config import settings
from attempt_engine.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Parse failures on an upstream payload are treated like transport failures.
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (httpx.HTTPError, ValueError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 4.0
    deadline_seconds: float = 30.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.UPSTREAM_MAX_RETRIES + 1,
            base_delay=settings.UPSTREAM_RETRY_BASE_DELAY,
            max_delay=settings.UPSTREAM_RETRY_MAX_DELAY,
            deadline_seconds=settings.UPSTREAM_DEADLINE_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Wait before retry number ``attempt + 1`` (0-based)."""
        return min(self.max_delay, self.base_delay * (2**attempt))


def call_with_backoff(
    func: Callable[[], T],
    *,
    operation: str,
    policy: RetryPolicy | None = None,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> T:
    """Run *func* until it succeeds or the retry budget is spent."""
    policy = policy or RetryPolicy.from_settings()
    started = monotonic()
    last_error: BaseException | None = None

    for attempt in range(policy.max_attempts):
        try:
            return func()
        except retry_on as e:
            last_error = e
            if attempt == policy.max_attempts - 1:
                break
            wait_time = policy.delay_for(attempt)
            if monotonic() - started + wait_time > policy.deadline_seconds:
                logger.warning(
                    "%s: deadline of %.1fs reached after %d attempt(s)",
                    operation, policy.deadline_seconds, attempt + 1,
                )
                break
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.2fs…",
                operation, attempt + 1, policy.max_attempts, e, wait_time,
            )
            sleep(wait_time)

    logger.error("%s gave up: %s", operation, last_error)
    raise UpstreamUnavailable(
        f"{operation} is unavailable", operation=operation, reason=str(last_error)
    ) from last_error
