"""Retry with exponential backoff for remote Ekuatia calls.

Only errors classified as retryable (timeouts, temporary unavailability and
rate limiting) are retried. Every other failure, and the last retryable one
once attempts are exhausted, propagates unchanged.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from config.logger import logger
from .errors import classify_exception, is_retryable


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    With the defaults a call is attempted three times, waiting 1s and then 2s
    between attempts.
    """
    max_attempts: int = 3  # Total attempts, including the first one
    initial_delay: float = 1.0  # Seconds before the first retry
    multiplier: float = 2.0  # Factor applied to the delay after each retry

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        return self.initial_delay * (self.multiplier ** (retry_number - 1))


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation: str = "remote_call",
    **kwargs,
) -> Any:
    """Call ``func`` and retry it on retryable failures.

    Unclassified exceptions are classified first, so what reaches the caller
    is always an :class:`errors.EkuatiaError`. Cancelling during a backoff
    sleep aborts immediately without another attempt.

    Args:
        func: Coroutine function to call.
        *args: Positional arguments for ``func``.
        policy: Retry policy. Uses defaults if not provided.
        sleep: Awaitable used for backoff delays.
        operation: Name used in log events.
        **kwargs: Keyword arguments for ``func``.

    Returns:
        The result of the first successful attempt.
    """
    policy = policy or RetryPolicy()
    log = logger.bind(operation=operation)

    attempt = 1
    while True:
        try:
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_exception(e, operation=operation, attempt=attempt)

            if not is_retryable(error):
                log.warning("call_failed_terminal", attempt=attempt, code=error.code)
                if error is e:
                    raise
                raise error from e

            if attempt >= policy.max_attempts:
                log.error("retries_exhausted", attempts=attempt, code=error.code)
                if error is e:
                    raise
                raise error from e

            delay = policy.delay_for(attempt)
            log.warning(
                "call_retry_scheduled",
                attempt=attempt,
                next_attempt=attempt + 1,
                delay_seconds=delay,
                code=error.code,
            )

        await sleep(delay)
        attempt += 1
