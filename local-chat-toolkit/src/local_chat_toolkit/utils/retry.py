"""
Retry and timeout helpers for calls that cross the process boundary.

'with_retry' re-runs an async operation with exponential backoff while the raised
error classifies as retryable. The delay before attempt n+1 is
'min(base_delay * backoff_multiplier ** (n - 1), max_delay)'. The sleep function
is injectable so tests run without real delays.

'with_timeout' bounds a single awaitable; a timeout surfaces as a 'TransientError'
of kind TIMEOUT so it follows the same retry and fatal/non-fatal policy as any
other failure of that stage.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from local_chat_toolkit.utils.errors import ErrorKind, TransientError, classify_error, is_retryable

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Exponential backoff parameters. Delays are in seconds."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=10.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the failed 'attempt' (1-based)."""
        return min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


NO_RETRY = RetryConfig(max_attempts=1, base_delay=0.0, max_delay=0.0)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    operation_name: str = "operation",
    retry_if: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run 'operation' and retry it on retryable failures.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        config: Backoff parameters. Defaults to 'RetryConfig()'.
        operation_name: Label used in log lines.
        retry_if: Extra predicate that must also hold for a retry to happen.
        sleep: Awaitable sleep, replaced by a no-op in tests.

    Raises:
        The last error once attempts are exhausted or the error is not retryable.
    """
    config = config or RetryConfig()
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            kind = classify_error(exc)
            retry = is_retryable(exc) and (retry_if is None or retry_if(exc))
            if not retry or attempt >= config.max_attempts:
                logger.warning(f"{operation_name} failed on attempt {attempt}/{config.max_attempts} ({kind}): {exc}")
                raise
            delay = config.delay_for(attempt)
            logger.info(f"{operation_name} failed ({kind}), retrying in {delay:.2f}s (attempt {attempt + 1}/{config.max_attempts})")
            await sleep(delay)
            attempt += 1


async def with_timeout(awaitable: Awaitable[T], timeout: float | None, *, operation_name: str = "operation") -> T:
    """Await 'awaitable', converting a timeout into a retryable 'TransientError'."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as exc:
        raise TransientError(f"{operation_name} timed out after {timeout}s", kind=ErrorKind.TIMEOUT, cause=exc) from exc
