"""
Retry policy for provider calls.

Usage:
    policy = RetryPolicy(max_attempts=2, delay=60.0)
    vectors = with_retry(lambda: embedder.embed_batch(texts), policy)
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .exceptions import ProviderRateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how long to wait before repeating a failed call.

    Attributes:
        max_attempts: Total attempts including the first one
        delay: Fixed wait in seconds between attempts
        retry_on: Exception types that trigger a retry; anything else
                  propagates immediately
    """
    max_attempts: int = 2
    delay: float = 60.0
    retry_on: Tuple[Type[BaseException], ...] = (ProviderRateLimited,)


NO_RETRY = RetryPolicy(max_attempts=1, delay=0.0)


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException], None]] = None
) -> T:
    """
    Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument callable to execute
        policy: Retry policy
        sleep: Sleep function (injected in tests)
        on_retry: Callback (attempt_number, exception) before each wait

    Returns:
        The operation's result

    Raises:
        The last exception once attempts are exhausted, or any exception
        not listed in ``policy.retry_on``.
    """
    attempt = 1
    while True:
        try:
            return operation()
        except policy.retry_on as exc:
            if attempt >= policy.max_attempts:
                raise
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.0fs",
                attempt, policy.max_attempts, exc, policy.delay
            )
            if on_retry:
                on_retry(attempt, exc)
            sleep(policy.delay)
            attempt += 1
