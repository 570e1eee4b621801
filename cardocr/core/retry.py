"""Explicit retry policy for calls into external models."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from .exceptions import UnrecoverableInferenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of running an operation under a RetryPolicy.

    ``ok=False`` is the terminal "unrecoverable" result: every allowed attempt
    failed and ``error`` holds the last failure.
    """
    ok: bool
    value: Optional[T] = None
    attempts: int = 0
    error: Optional[BaseException] = None

    def unwrap(self) -> T:
        if not self.ok:
            raise UnrecoverableInferenceError(
                f"operation failed after {self.attempts} attempt(s): {self.error}",
                attempts=self.attempts,
                last_error=self.error,
            )
        return self.value


class RetryPolicy:
    """Run an operation, retrying on the configured error types.

    Args:
        max_retries: retries after the first attempt (1 means two attempts in total)
        retry_on: exception types that trigger a retry; anything else propagates
    """

    def __init__(self, max_retries: int = 1,
                 retry_on: Tuple[Type[BaseException], ...] = (Exception,)):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.retry_on = retry_on

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def run(self, operation: Callable[[], T],
            before_retry: Optional[Callable[[int, BaseException], None]] = None,
            operation_name: str = "operation") -> RetryOutcome[T]:
        """Run ``operation``; ``before_retry(attempt, error)`` runs before each retry.

        ``before_retry`` typically rebuilds the failed model. If it fails itself
        the outcome is terminal.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return RetryOutcome(ok=True, value=operation(), attempts=attempt)
            except self.retry_on as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                logger.info(f"{operation_name} failed on attempt {attempt}, retrying: {e}")
                if before_retry is not None:
                    try:
                        before_retry(attempt, e)
                    except self.retry_on as reinit_error:
                        logger.error(f"Could not prepare retry of {operation_name}: {reinit_error}",
                                     exc_info=reinit_error)
                        return RetryOutcome(ok=False, attempts=attempt, error=reinit_error)

        logger.error(f"Unrecoverable failure in {operation_name} after {self.max_attempts} attempt(s)",
                     exc_info=last_error)
        return RetryOutcome(ok=False, attempts=self.max_attempts, error=last_error)
