"""Bounded retry with exponential backoff for collaborator calls."""

import logging
import time
from typing import Any, Callable, Optional

import openai

from ..cancellation import check_cancelled
from ..exceptions import TransientCollaboratorError

logger = logging.getLogger(__name__)

# Failures worth retrying: timeouts, dropped connections, rate limits and 5xx.
TRANSIENT_ERRORS = (
    TransientCollaboratorError,
    TimeoutError,
    ConnectionError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def is_transient_error(error: BaseException) -> bool:
    """Return True if ``error`` is a timeout, rate limit or connection failure."""
    return isinstance(error, TRANSIENT_ERRORS)


def call_with_retry(
    func: Callable[[], Any],
    max_retries: int = 3,
    backoff: float = 0.5,
    multiplier: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "collaborator call",
    cancel_token: Optional[Any] = None,
) -> Any:
    """Call ``func`` and retry transient failures with exponential backoff.

    Args:
        func: Zero-argument callable performing the external call
        max_retries: Number of retries after the first attempt
        backoff: Delay in seconds before the first retry
        multiplier: Factor applied to the delay after every retry
        sleep: Sleep function (injectable for tests)
        description: Human-readable name used in log messages
        cancel_token: Optional token checked before every attempt

    Returns:
        Whatever ``func`` returns

    Raises:
        The last transient error once retries are exhausted, or any
        non-transient error immediately.
    """
    attempt = 0
    while True:
        check_cancelled(cancel_token, description)
        try:
            return func()
        except TRANSIENT_ERRORS as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            delay = backoff * (multiplier ** (attempt - 1))
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_retries + 1}): {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)
