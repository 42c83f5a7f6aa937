"""Bounded exponential-backoff retry for backend calls."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from tarjuman.config import RetryConfig
from tarjuman.pipeline.errors import (
    ErrorKind, RateLimitError, classify_error, is_retryable,
)

logger = logging.getLogger("tarjuman.retry")

T = TypeVar("T")


class BackoffRetrier:
    """Runs an async operation, retrying failures with exponential backoff.

    Delay before retry N (0-based) is min(initial * multiplier**N, max_delay),
    without jitter. Rate-limit failures start from a longer initial delay and
    honour the server's Retry-After up to max_delay.

    Error contract:
    - The last error is re-raised as-is (same object, never wrapped).
    - Auth, audio-device and playback errors are raised on the first failure.
    - With max_attempts=None the budget depends on the error kind
      (RetryConfig.kind_budgets), falling back to max_retries.

    Waits go through the injected sleep function, so the caller's pipeline is
    blocked for the whole retry sequence.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._metrics = {
            "calls": 0,
            "attempts": 0,
            "retries": 0,
            "failures": 0,
            "last_error": None,
            "last_error_time": None,
        }

    @property
    def metrics(self) -> dict:
        return dict(self._metrics)

    def delay_for(self, attempt: int, kind: ErrorKind = ErrorKind.UNKNOWN) -> float:
        """Seconds to wait after the failure of attempt index `attempt`."""
        initial = (
            self.config.rate_limit_initial_delay
            if kind == ErrorKind.RATE_LIMIT
            else self.config.initial_delay
        )
        return min(
            initial * (self.config.backoff_multiplier ** attempt),
            self.config.max_delay,
        )

    def _budget(self, kind: ErrorKind, max_attempts: int | None) -> int:
        if not is_retryable(kind):
            return 0
        if max_attempts is not None:
            return max_attempts
        return self.config.kind_budgets.get(kind.value, self.config.max_retries)

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "unknown",
        max_attempts: int | None = None,
    ) -> T:
        """Call `operation` until it succeeds or the retry budget is spent."""
        self._metrics["calls"] += 1
        attempt = 0
        while True:
            self._metrics["attempts"] += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                kind = classify_error(e)
                budget = self._budget(kind, max_attempts)
                if attempt >= budget:
                    self._metrics["failures"] += 1
                    self._metrics["last_error"] = str(e)
                    self._metrics["last_error_time"] = time.time()
                    if budget == 0 and not is_retryable(kind):
                        logger.error(f"Permanent {kind.value} error in {context} (no retry): {e}")
                    else:
                        logger.error(f"Max retries exceeded for {context}: {e}")
                    raise

                delay = self.delay_for(attempt, kind)
                if isinstance(e, RateLimitError) and e.retry_after:
                    delay = min(max(delay, e.retry_after), self.config.max_delay)
                self._metrics["retries"] += 1
                logger.warning(
                    f"Retry {attempt + 1}/{budget + 1} for {context} in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)
                attempt += 1
