"""
Retry utilities for quota-limited provider calls.

Implements bounded exponential backoff.  Unlike a decorator that re-raises
the last exception, :func:`call_with_backoff` always returns a
:class:`RetryOutcome` tagged ``ok`` or ``exhausted`` so the caller decides
what an exhausted budget means for its source.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, Tuple, Type, TypeVar

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_OK = "ok"
STATUS_EXHAUSTED = "exhausted"

RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "2"))


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY_SECONDS  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[BaseException], ...] = field(
        default_factory=lambda: (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            requests.exceptions.ChunkedEncodingError,
        )
    )


@dataclass
class RetryOutcome(Generic[T]):
    """Tagged result of a bounded retry loop.

    ``value`` is the last value returned by the call (``None`` if every
    attempt raised); ``error`` describes why the final attempt was not
    accepted.
    """
    status: str
    value: Optional[T]
    attempts: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def exhausted(self) -> bool:
        return self.status == STATUS_EXHAUSTED


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt + 1``: ``base * exp_base ** attempt``."""
    return min(
        config.base_delay * (config.exponential_base ** attempt),
        config.max_delay,
    )


def call_with_backoff(
    call: Callable[[], T],
    should_retry: Callable[[T], bool] = lambda _value: False,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Any] = time.sleep,
    label: str = "call",
) -> RetryOutcome[T]:
    """
    Run ``call`` until it returns an accepted value or the budget runs out.

    Args:
        call: Zero-argument callable performing one attempt.
        should_retry: Predicate on the returned value; True means the
            attempt was throttled (e.g. HTTP 429) and should be retried.
        config: Retry configuration (attempt count, delays, exceptions).
        sleep: Injected for tests.
        label: Name used in log lines.

    Returns:
        ``RetryOutcome(status="ok")`` with the accepted value, or
        ``RetryOutcome(status="exhausted")`` after ``max_attempts`` failures.
        Exceptions outside ``config.retryable_exceptions`` propagate.
    """
    config = config or RetryConfig()
    last_value: Optional[T] = None
    last_error: Optional[str] = None

    for attempt in range(config.max_attempts):
        try:
            value = call()
        except config.retryable_exceptions as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        else:
            if not should_retry(value):
                return RetryOutcome(STATUS_OK, value, attempt + 1)
            last_value = value
            last_error = "throttled"

        if attempt < config.max_attempts - 1:
            delay = calculate_delay(attempt, config)
            logger.warning(
                "%s attempt %d/%d failed (%s). Retrying in %.1fs...",
                label, attempt + 1, config.max_attempts, last_error, delay,
            )
            sleep(delay)

    logger.error(
        "%s: all %d attempts failed. Last error: %s",
        label, config.max_attempts, last_error,
    )
    return RetryOutcome(STATUS_EXHAUSTED, last_value, config.max_attempts, last_error)
