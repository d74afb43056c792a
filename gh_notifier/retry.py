"""Exponential backoff for feed requests and failed poll cycles.

`retry` re-runs a single request on transient errors; `backoff_delay`
computes the wait used both between attempts and, by the engine,
between consecutive failed cycles.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (OSError, ConnectionError)


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, attempts: int, last_error: Exception) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number `attempt` (1-based), capped at max_delay."""
    delay = min(
        config.base_delay * (config.multiplier ** max(attempt - 1, 0)),
        config.max_delay,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


def retry(
    func: Callable[..., T],
    config: RetryConfig | None = None,
    sleep_func: Callable[[float], None] | None = None,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Execute func, retrying retryable exceptions with exponential backoff.

    Args:
        func: Callable to execute.
        config: Retry configuration. Uses defaults if None.
        sleep_func: Sleep function (injectable for testing). Defaults to time.sleep.
        *args, **kwargs: Passed to func.

    Returns:
        The return value of func on success.

    Raises:
        RetryError: If all attempts fail with retryable exceptions.
    """
    cfg = config or RetryConfig()
    do_sleep = sleep_func or time.sleep
    last_exc: Exception | None = None

    for attempt in range(1, cfg.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            last_exc = exc
            if attempt == cfg.max_attempts:
                break
        do_sleep(backoff_delay(attempt, cfg))

    raise RetryError(cfg.max_attempts, last_exc)  # type: ignore[arg-type]
