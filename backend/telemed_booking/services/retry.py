"""
Bounded retry around practice-management calls.

Every attempt is time-bounded. Only errors flagged transient are retried
(tenacity, exponential backoff); everything else propagates on the first
failure. The retry loop knows nothing about conflict resolution.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    timeout: float = 10.0
    base_delay: float = 0.2

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.external_retry_attempts,
            timeout=settings.pm_timeout,
            base_delay=settings.external_retry_base_delay,
        )


def _is_transient(error: BaseException) -> bool:
    return getattr(error, "transient", False)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    timeout: float = 10.0,
    base_delay: float = 0.2,
    error_cls: type[ExternalServiceError] = ExternalServiceError,
    description: str = "external call",
    retry_on_timeout: bool = True,
) -> T:
    """
    Run `operation` up to `attempts` times.

    A timeout becomes `error_cls`; it counts as transient only when
    `retry_on_timeout` is set. Writes pass False: a timed-out create may
    already exist upstream, so repeating it could double-book.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    async def attempt_once() -> T:
        try:
            return await asyncio.wait_for(operation(), timeout)
        except asyncio.TimeoutError:
            raise error_cls(
                f"{description} timed out after {timeout}s",
                transient=retry_on_timeout,
            ) from None
        except ExternalServiceError as e:
            if isinstance(e, error_cls):
                raise
            raise error_cls(str(e), transient=e.transient, status_code=e.status_code) from e

    def log_before_sleep(retry_state: RetryCallState) -> None:
        sleep_seconds = getattr(retry_state.next_action, "sleep", 0.0)
        logger.warning(
            f"{description} failed (attempt {retry_state.attempt_number}/{attempts}), "
            f"retrying in {sleep_seconds:.2f}s: {retry_state.outcome.exception()}"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay),
        retry=retry_if_exception(_is_transient),
        before_sleep=log_before_sleep,
        reraise=True,
    )
    try:
        return await retrying(attempt_once)
    except ExternalServiceError as e:
        logger.error(f"{description} failed: {e}")
        raise
