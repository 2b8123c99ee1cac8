"""
Transport errors and exponential backoff for bank web service calls.

Only calls that the bank tolerates being repeated are retried (verify
and settle, which answer "already verified"/"already settled" on a
repeat). Payment requests and reversals are never retried here; the
caller decides, because a lost response may hide a completed call.
"""

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger("bankpay.retry")

RETRIABLE_STATUS_CODES = {429, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 0.5
MAX_DELAY = 10.0


class ProviderError(Exception):
    """Base exception for gateway transport and protocol errors."""

    def __init__(self, message: str, status_code: int = 500, retriable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class RateLimitError(ProviderError):
    """429 Too Many Requests from the gateway."""

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None):
        super().__init__(message, status_code=429, retriable=True)
        self.retry_after = retry_after


class PermanentError(ProviderError):
    """Non-retriable error (rejected HTTP call, malformed SOAP response)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code=status_code, retriable=False)


def error_for_status(status_code: int, body: str = "") -> ProviderError | None:
    """Classify a non-2xx HTTP status from a gateway. Returns None for success."""
    if 200 <= status_code < 300:
        return None
    snippet = body[:200]
    if status_code == 429:
        return RateLimitError(f"Gateway rate limit: {snippet}")
    if status_code in RETRIABLE_STATUS_CODES or status_code >= 500:
        return ProviderError(f"Gateway unavailable ({status_code}): {snippet}", status_code=status_code)
    return PermanentError(f"Gateway rejected the call ({status_code}): {snippet}", status_code=status_code)


async def with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function with exponential backoff on retriable errors.

    Args:
        func: Async callable to execute.
        max_retries: Maximum number of retry attempts.
        base_delay: First backoff delay in seconds, doubled on each attempt.

    Returns:
        The result of the function call.

    Raises:
        ProviderError: On permanent failure or exhausted retries.
    """
    delay = base_delay
    last_error = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except ProviderError as e:
            last_error = e
            if not e.retriable:
                raise

            if attempt < max_retries:
                sleep_for = min(delay, MAX_DELAY)
                if isinstance(e, RateLimitError) and e.retry_after:
                    sleep_for = min(e.retry_after, MAX_DELAY)

                logger.warning(
                    "Retriable error on attempt %d/%d: %s - sleeping %.1fs",
                    attempt + 1,
                    max_retries + 1,
                    e,
                    sleep_for,
                )
                await asyncio.sleep(sleep_for)
                delay = min(delay * 2, MAX_DELAY)
            else:
                logger.error("Exhausted %d retries for gateway call: %s", max_retries, e)
                raise

    raise last_error or ProviderError("Unknown error after retries")
