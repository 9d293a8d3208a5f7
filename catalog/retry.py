import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .exceptions import DeadlineExceeded

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def exponential_backoff(attempt: int) -> float:
    """Seconds to wait after failed attempt ``attempt`` (1 -> 2s, 2 -> 4s, ...)."""
    return float(2 ** attempt)


def always_retry(exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_ATTEMPTS
    backoff: Callable[[int], float] = exponential_backoff
    is_retryable: Callable[[BaseException], bool] = field(default=always_retry)


class Deadline:
    """
    Wall-clock budget for a whole sync run.

    ``Deadline(None)`` never expires. Remaining time is measured on the
    monotonic clock so system clock changes cannot stretch or shrink a run.
    """

    def __init__(self, seconds: Optional[float]):
        self._seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, what: str = 'operation'):
        if self.expired():
            raise DeadlineExceeded(
                f"Run deadline of {self._seconds:.0f}s exceeded before {what}."
            )


def call_with_retry(
    func: Callable,
    policy: RetryPolicy,
    *,
    on_failure: Optional[Callable[[BaseException, int], None]] = None,
    deadline: Optional[Deadline] = None,
    describe: str = 'call',
):
    """
    Call ``func()`` until it succeeds or the policy gives up.

    After each failure ``on_failure(exc, attempt)`` runs first. Errors the
    policy marks as non-retryable are re-raised immediately; otherwise the
    loop sleeps ``policy.backoff(attempt)`` seconds before the next attempt.
    The last error is re-raised once all attempts are used.
    """
    for attempt in range(1, policy.max_attempts + 1):
        if deadline is not None:
            deadline.check(describe)
        try:
            return func()
        except Exception as exc:
            if on_failure is not None:
                on_failure(exc, attempt)

            if not policy.is_retryable(exc) or attempt >= policy.max_attempts:
                raise

            wait = policy.backoff(attempt)
            if deadline is not None:
                remaining = deadline.remaining()
                if remaining is not None:
                    wait = min(wait, remaining)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Waiting %.1fs before retry.",
                describe, attempt, policy.max_attempts, exc, wait,
            )
            time.sleep(wait)
