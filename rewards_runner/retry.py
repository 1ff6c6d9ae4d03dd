"""Bounded retry tracking and page reload helpers"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from loguru import logger

from .config import RELOAD_MAX_TOTAL_SECONDS, RETRY_LIMITS


class RetryTracker:
    """
    Attempt-count-bounded retry gate.

    Owned by one chain of attempts; build a new tracker instead of
    resetting one. A non-positive maximum disables retries, so the first
    registered failure already reports exhaustion.
    """

    def __init__(self, max_attempts: int):
        try:
            normalized = int(max_attempts)
        except (TypeError, ValueError):
            normalized = 0
        self.max_attempts = max(0, normalized)
        self.attempt_count = 0

    def register_failure(self) -> bool:
        """Record a failure; True if another attempt is allowed"""
        self.attempt_count += 1
        return not self.has_exceeded()

    def has_exceeded(self) -> bool:
        return self.attempt_count > self.max_attempts

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)


class TimeBoundedRetry(RetryTracker):
    """
    Retry gate with an extra wall-clock ceiling.

    Exhausted once either the attempt ceiling or the total elapsed time
    since construction is exceeded, whichever comes first.
    """

    def __init__(
        self,
        max_attempts: int,
        max_total_seconds: float = RELOAD_MAX_TOTAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(max_attempts)
        self.max_total_seconds = max_total_seconds
        self._clock = clock
        self._started_at = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def time_exceeded(self) -> bool:
        return self.elapsed > self.max_total_seconds

    def has_exceeded(self) -> bool:
        return super().has_exceeded() or self.time_exceeded()

    def should_attempt(self) -> bool:
        """Checked before each attempt"""
        return not self.has_exceeded()


async def reload_with_retry(
    reload: Callable[[], Awaitable],
    recover: Optional[Callable[[], Awaitable]] = None,
    max_attempts: int = RETRY_LIMITS["DASHBOARD_RELOAD"],
    max_total_seconds: float = RELOAD_MAX_TOTAL_SECONDS,
    settle_delay: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Reload a page, retrying transient failures.

    Stops at ``max_attempts`` total attempts or ``max_total_seconds`` of
    wall-clock time. A "page has been closed" error on the first attempt
    triggers ``recover`` once (typically a navigation home); on any later
    attempt it ends the loop.

    Raises:
        The last reload error if no attempt succeeded
    """
    budget = TimeBoundedRetry(max_attempts - 1, max_total_seconds, clock=clock)
    last_error: Optional[Exception] = None

    while budget.should_attempt():
        attempt = budget.attempt_count + 1
        try:
            await reload()
            return
        except Exception as e:
            last_error = e
            message = str(e)
            logger.warning(f"Reload failed attempt {attempt}: {message}")

            if "has been closed" in message:
                if attempt == 1 and recover is not None:
                    logger.warning("Page appears closed; trying one navigation fallback")
                    try:
                        await recover()
                    except Exception as recover_error:
                        logger.warning(f"Navigation fallback failed: {recover_error}")
                else:
                    break

            if not budget.register_failure():
                break
            await asyncio.sleep(settle_delay)

    if budget.time_exceeded():
        logger.warning(f"Reload retry exceeded total timeout ({max_total_seconds:.0f}s)")
    if last_error is not None:
        raise last_error
