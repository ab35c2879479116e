"""
Retry With Backoff — Code Review Agent

PURPOSE:
    Wrap a fallible async operation (in practice: one HTTP round-trip to an
    LLM provider) with bounded exponential-backoff retry.

    This module deliberately knows nothing about HTTP or LLMs. Stage 5 hands
    it a zero-argument coroutine function; tests hand it synthetic ones.

RETRY RULES:
    - Success returns immediately. No delay after the last attempt.
    - Only RetryableAPIError with retryable=True is retried. Everything else
      (MalformedResponseError, ConfigurationError, plain bugs) propagates on
      the first occurrence, unchanged.
    - At most max_retries + 1 attempts in total.
    - Delays are initial_delay_ms, 2x, 4x, ... and are awaited with
      asyncio.sleep, so the event loop keeps serving other requests.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from review_agent.errors import RetryableAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_MULTIPLIER = 2


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay_ms: float = 1000,
) -> T:
    """
    Await `operation()` until it succeeds, retrying transient failures.

    Args:
        operation: Zero-argument callable returning an awaitable. Called once
                   per attempt, so it must build a fresh coroutine each time.
        max_retries: How many times a retryable failure may be retried.
                     0 means a single attempt.
        initial_delay_ms: Wait before the first retry, in milliseconds.
                          Doubles after every retry.

    Returns:
        Whatever the first successful attempt returns.

    Raises:
        ValueError: On a negative max_retries or non-positive delay.
        Exception: The last error raised by `operation`, unchanged, once it is
                   non-retryable or the retry budget is spent.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")
    if initial_delay_ms <= 0:
        raise ValueError(f"initial_delay_ms must be positive, got {initial_delay_ms}")

    retries = 0
    delay_ms = initial_delay_ms

    while True:
        try:
            return await operation()
        except RetryableAPIError as e:
            if not e.retryable or retries >= max_retries:
                raise
            retries += 1
            logger.warning(
                "Retry %d/%d in %.0fms after error: %s", retries, max_retries, delay_ms, e
            )
            await asyncio.sleep(delay_ms / 1000)
            delay_ms *= BACKOFF_MULTIPLIER
