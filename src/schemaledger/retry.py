"""
Caller-side retry for transient failures.

The engine never retries on its own. The CLI wraps a whole migrate run in a
RetryPolicy so that a dropped connection or a held lock can be retried a
bounded number of times. Only RetryableError is retried; checksum mismatches
and failing migrations surface immediately.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded retry with a fixed pause between attempts.

    Usage:
        policy = RetryPolicy(max_attempts=3, backoff_seconds=2.0)
        result = policy.call(executor.migrate)
    """

    def __init__(
        self,
        max_attempts: int = 1,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep if sleep is not None else time.sleep

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} failed: {error}; "
            f"retrying in {self.backoff_seconds:g}s"
        )

    def call(self, fn: Callable[[], T]) -> T:
        """Call fn, retrying RetryableError up to max_attempts in total."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception_type(RetryableError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(fn)
        except RetryableError as e:
            if self.max_attempts > 1:
                logger.error(f"Giving up after {self.max_attempts} attempts: {e}")
            raise
