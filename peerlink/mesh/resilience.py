"""Resilience helpers for mesh callers.

Provides:
- ``supervised_task``: create_task wrapper with error logging
- ``RetryPolicy``: configurable retry parameters
- ``retry_call``: exponential-backoff wrapper for async calls such as
  ``Messenger.send``

The core itself never retries a send; callers that want retries compose
them with ``retry_call``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from peerlink.mesh.errors import ConnectionFailedError

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Supervised task: create_task with error logging
# ---------------------------------------------------------------------------

def supervised_task(
    coro: Awaitable[Any],
    *,
    name: str = "",
) -> asyncio.Task:
    """Wrap ``asyncio.create_task`` with an error-logging callback.

    If the task raises an exception (other than ``CancelledError``),
    it is logged as an error instead of becoming an unhandled exception.
    """
    task = asyncio.create_task(coro, name=name or None)

    def _on_done(t: asyncio.Task) -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(
                "[Resilience] supervised task {!r} failed: {!r}",
                t.get_name(), exc,
            )

    task.add_done_callback(_on_done)
    return task


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass
class RetryPolicy:
    """Configuration for exponential-backoff retries.

    Parameters
    ----------
    max_retries:
        Maximum number of retry attempts (0 = no retries, just the initial try).
    base_delay:
        Initial delay in seconds before the first retry.
    max_delay:
        Cap on delay between retries.
    backoff_factor:
        Multiplier applied to delay after each retry.
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Return the delay (seconds) before retry *attempt* (0-based)."""
        d = self.base_delay * (self.backoff_factor ** attempt)
        return min(d, self.max_delay)


DEFAULT_RETRY = RetryPolicy()


async def retry_call(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy = DEFAULT_RETRY,
    label: str = "call",
    retry_on: tuple[type[BaseException], ...] = (ConnectionFailedError,),
    **kwargs: Any,
) -> T:
    """Await ``fn(*args, **kwargs)``, retrying on *retry_on* errors.

    Any other exception propagates straight away.  When every attempt
    fails, the last retryable error is re-raised.
    """
    attempts = 1 + policy.max_retries
    for attempt in range(attempts):
        try:
            result = await fn(*args, **kwargs)
        except retry_on as exc:
            if attempt + 1 >= attempts:
                logger.warning(
                    "[Resilience] {} failed after {} attempts: {}",
                    label, attempts, exc,
                )
                raise
            delay = policy.delay_for(attempt)
            logger.debug(
                "[Resilience] {} attempt {}/{} failed ({}), retrying in {:.1f}s",
                label, attempt + 1, attempts, exc, delay,
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(
                "[Resilience] {} succeeded on attempt {}/{}",
                label, attempt + 1, attempts,
            )
        return result

    raise AssertionError("unreachable")  # pragma: no cover
