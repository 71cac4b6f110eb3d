import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_CODES = frozenset({
    "connection-reset",
    "connection-refused",
    "timed-out",
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
})


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether a transport failure is transient.

    Retryable when the HTTP status is 408/429/5xx-gateway, the connection
    failure code is a reset/refusal/timeout, or the message mentions a timeout.
    """
    if _status_of(error) in RETRYABLE_STATUSES:
        return True
    if getattr(error, "code", None) in RETRYABLE_CODES:
        return True
    return "timeout" in str(error).lower()


class RetryPolicy:
    """
    Bounded retries with linear backoff for transport calls.

    Attempt `n` that fails with a retryable error waits `base_delay * n`
    seconds before attempt `n + 1`. The original error is re-raised unchanged
    once attempts are exhausted or the error is not retryable.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> T:
        """
        Run `operation` until it succeeds or retrying is no longer allowed.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            max_attempts (int, optional): Overrides the policy default.
            base_delay (float, optional): Overrides the policy default.

        Returns:
            The result of the first successful attempt.
        """
        attempts = max(1, max_attempts or self.max_attempts)
        delay = self.base_delay if base_delay is None else base_delay

        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= attempts or not is_retryable_error(e):
                    raise
                wait = delay * attempt
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt, attempts, e, wait,
                )
                await self._sleep(wait)
                attempt += 1
