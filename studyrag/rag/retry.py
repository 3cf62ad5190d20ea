"""
Retry policy for upstream calls.

A RetryPolicy value describes how often and how long to wait; call_with_retry
applies it to any awaitable factory using tenacity.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make in total and the fixed wait between them."""

    max_attempts: int = 2
    backoff: float = 0.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff < 0:
            raise ValueError(f"backoff must be >= 0, got {self.backoff}")


NO_RETRY = RetryPolicy(max_attempts=1, backoff=0)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation: str = "upstream call",
) -> T:
    """Await ``fn()`` until it succeeds or the policy's attempts are exhausted.

    Only exceptions listed in ``retry_on`` are retried; anything else, and the
    last retryable error, propagates unchanged.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_fixed(policy.backoff),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.info(
                    f"[RETRY] {operation}: attempt "
                    f"{attempt.retry_state.attempt_number}/{policy.max_attempts}"
                )
            return await fn()
