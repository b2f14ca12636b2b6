from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import TeraSyncError


logger = logging.getLogger(__name__)

T = TypeVar("T")

FailedAttemptObserver = Callable[[int, int, BaseException], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry schedule for a remote operation.

    - attempts: total number of calls, including the first one.
    - initial_delay: seconds to wait after the first failure.
    - backoff_factor: multiplier applied to the delay after every further failure.
    """

    attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

    def delay_after(self, attempt_number: int) -> float:
        """Seconds to wait after failed attempt `attempt_number` (1-based)."""
        return self.initial_delay * (self.backoff_factor ** (attempt_number - 1))


# Policies used by the sync engine unless overridden in SyncConfig
PROVISION_POLICY = RetryPolicy(attempts=2, initial_delay=0.2, backoff_factor=2.0)
REMOTE_POLICY = RetryPolicy(attempts=3, initial_delay=1.0, backoff_factor=2.0)


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: library errors decide via their `retryable` flag."""
    if isinstance(error, TeraSyncError):
        return error.retryable
    return isinstance(error, Exception)


def log_failed_attempt(label: str) -> FailedAttemptObserver:
    def _observer(attempt_number: int, retries_left: int, error: BaseException) -> None:
        logger.debug(
            "[%s attempt %d] Failed: %s. Retries left: %d.",
            label,
            attempt_number,
            error,
            retries_left,
        )

    return _observer


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_failed_attempt: Optional[FailedAttemptObserver] = None,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` up to `policy.attempts` times with exponential backoff.

    The observer is informed of every failed attempt and has no effect on
    control flow. When attempts are exhausted (or `should_retry` rejects the
    error) the last error is re-raised with `attempt_number` set on it.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            retries_left = policy.attempts - attempt
            if on_failed_attempt is not None:
                on_failed_attempt(attempt, retries_left, exc)
            if retries_left <= 0 or not should_retry(exc):
                try:
                    exc.attempt_number = attempt  # type: ignore[attr-defined]
                except AttributeError:
                    pass
                exc.add_note(f"failed after {attempt} attempt(s)")
                raise
            await sleep(policy.delay_after(attempt))


__all__ = [
    "RetryPolicy",
    "PROVISION_POLICY",
    "REMOTE_POLICY",
    "is_retryable",
    "log_failed_attempt",
    "run_with_retry",
]
