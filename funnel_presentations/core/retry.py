"""Timeout and retry helpers for provider calls.

Each attempt is bounded by its own deadline (``with_timeout``). ``with_retry``
re-runs an attempt when the classifier says the failure is transient and
stops at once on a terminal failure. Delay before attempt k (k >= 2) is
``base * 2^(k-2)`` scaled by a uniform jitter factor in [0.7, 1.3].

Deadlines are ``asyncio.timeout`` contexts, so an attempt deadline nested
inside the stream deadline never outlives it: whichever expires first wins
and only the expiring context turns the cancellation into ``TimeoutError``.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TypeVar

from funnel_presentations.core.exceptions import TerminalProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_MIN = 0.7
JITTER_MAX = 1.3


class RetryDecision(StrEnum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


def default_classifier(error: BaseException) -> RetryDecision:
    """Terminal provider errors stop immediately; anything else is retried."""
    if isinstance(error, TerminalProviderError):
        return RetryDecision.TERMINAL
    return RetryDecision.RETRYABLE


def compute_backoff_delay(
    attempt: int, base_delay: float, rng: random.Random | None = None
) -> float:
    """Seconds to wait before ``attempt`` (1-based). The first attempt never waits."""
    if attempt < 2:
        return 0.0
    jitter = (rng or random).uniform(JITTER_MIN, JITTER_MAX)
    return base_delay * (2 ** (attempt - 2)) * jitter


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation_name: str) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    The awaited task is cancelled on expiry, which releases sockets held by
    httpx and the provider SDKs.

    Raises:
        TimeoutError: "{operation_name} timed out after {timeout}s"
    """
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as e:
        raise TimeoutError(f"{operation_name} timed out after {timeout}s") from e


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_attempts: int,
    classify: Callable[[BaseException], RetryDecision] = default_classifier,
    base_delay: float = 1.0,
    operation_name: str = "operation",
    log_context: dict | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or retrying is pointless.

    Args:
        operation: Coroutine factory taking the 1-based attempt number.
            Must bound its own duration (see ``with_timeout``).
        max_attempts: Total attempts including the first.
        classify: Maps a failure to RETRYABLE or TERMINAL.
        base_delay: Backoff base in seconds.
        operation_name: Used in log messages.
        log_context: Extra structured fields for every log line.
        sleep: Injected for tests.

    Returns:
        The first successful result.

    Raises:
        The last failure, when it is terminal or attempts are exhausted.
        Best-effort callers catch it and degrade; mandatory callers let it
        propagate.
    """
    extra = dict(log_context or {})
    max_attempts = max(1, max_attempts)

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = compute_backoff_delay(attempt, base_delay)
            logger.info(
                f"{operation_name} backing off {delay:.2f}s before attempt {attempt}",
                extra={**extra, "attempt": attempt, "delay_seconds": round(delay, 3)},
            )
            await sleep(delay)

        try:
            return await operation(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            decision = classify(e)
            is_timeout = isinstance(e, TimeoutError)
            fields = {
                **extra,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "decision": decision.value,
                "is_timeout": is_timeout,
                "error_type": type(e).__name__,
            }
            if decision is RetryDecision.TERMINAL:
                logger.warning(f"{operation_name} failed terminally, not retrying: {e}", extra=fields)
                raise
            if attempt >= max_attempts:
                logger.warning(
                    f"{operation_name} failed after {attempt} attempts: {e}", extra=fields
                )
                raise
            logger.warning(f"{operation_name} attempt {attempt} failed, retrying: {e}", extra=fields)

    raise RuntimeError("unreachable")  # pragma: no cover
