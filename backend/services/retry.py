"""
Retry with exponential backoff for user-triggered backend calls.

Each attempt is bounded by a timeout. Between attempts the user gets a
warning toast with the delay; when every attempt failed an error toast is
shown and RetriesExhausted is raised.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import BackendError, NetworkError, OperationTimeout, RetriesExhausted, StorageError
from services.toasts import ToastManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

# validation and permission failures are final; these are worth another try
RETRYABLE_ERRORS = (NetworkError, BackendError, StorageError)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    toasts: ToastManager,
    retry_message: str,
    failure_message: str,
    timeout: float,
    attempts: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 8.0,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Run operation up to `attempts` times.

    retry_message may contain "{seconds}", filled with the upcoming delay.
    The delay before attempt n+1 is min(base_delay * 2^(n-1), max_delay).
    """

    async def attempt_once() -> T:
        try:
            return await asyncio.wait_for(operation(), timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeout(label) from e

    def before_sleep(retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("%s attempt %d failed: %s", label, retry_state.attempt_number, error)
        toasts.warning(retry_message.format(seconds=f"{delay:g}"))

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep,
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await attempt_once()
    except RETRYABLE_ERRORS as e:
        logger.error("%s failed after %d attempts: %s", label, attempts, e)
        toasts.error(failure_message)
        raise RetriesExhausted(failure_message, last_error=e) from e
    raise RuntimeError("retry loop ended without a result")
