"""
Retry with exponential backoff, and cancellation plumbing for async calls.

Only ``TransportError`` is retried; any other error propagates on the first
occurrence. A caller-supplied ``asyncio.Event`` cancels the wait between
attempts and the in-flight attempt itself.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from ario.core.exceptions import CancelledError, DeliveryError, TransportError
from ario.core.models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def check_cancelled(signal: Optional[asyncio.Event], what: str) -> None:
    if signal is not None and signal.is_set():
        raise CancelledError(f"{what} cancelled")


async def sleep_or_cancel(delay: float, signal: Optional[asyncio.Event], what: str) -> None:
    """Sleep for ``delay`` seconds unless ``signal`` fires first."""
    if signal is None:
        await asyncio.sleep(delay)
        return
    check_cancelled(signal, what)
    try:
        await asyncio.wait_for(signal.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise CancelledError(f"{what} cancelled")


async def run_cancellable(
    coro: Coroutine[Any, Any, T], signal: Optional[asyncio.Event], what: str
) -> T:
    """Await ``coro``, abandoning it as soon as ``signal`` is set."""
    if signal is None:
        return await coro
    if signal.is_set():
        coro.close()
        raise CancelledError(f"{what} cancelled")

    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise CancelledError(f"{what} cancelled")


async def with_deadline(coro: Awaitable[T], timeout: Optional[float], what: str) -> T:
    """Bound the whole operation, retries included, by ``timeout`` seconds."""
    if timeout is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise CancelledError(f"{what} timed out after {timeout}s") from exc


async def call_with_retries(
    operation: Callable[[], Coroutine[Any, Any, T]],
    policy: RetryPolicy,
    *,
    what: str,
    signal: Optional[asyncio.Event] = None,
    log_extra: Optional[dict] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy's attempts are exhausted.

    Every attempt runs the same operation; callers pass a closure over an
    already-built request so retries never change what is sent.

    Raises:
        DeliveryError: When every attempt failed with a transport error.
        CancelledError: When ``signal`` fires.
    """
    extra = dict(log_extra or {})
    last_error: Optional[TransportError] = None
    for attempt in range(policy.max_retries):
        check_cancelled(signal, what)
        try:
            result = await run_cancellable(operation(), signal, what)
            if attempt > 0:
                logger.info("%s succeeded on attempt %d", what, attempt + 1, extra=extra)
            return result
        except TransportError as e:
            last_error = e
            logger.warning(
                "%s attempt %d/%d failed: %s",
                what,
                attempt + 1,
                policy.max_retries,
                e,
                extra={**extra, "attempt": attempt + 1, "error_type": type(e).__name__},
            )
            if attempt < policy.max_retries - 1:
                await sleep_or_cancel(policy.delay_for(attempt), signal, what)

    logger.error("%s failed after %d attempts", what, policy.max_retries, extra=extra)
    raise DeliveryError(
        f"{what} failed after {policy.max_retries} attempts: {last_error}",
        attempts=policy.max_retries,
        last_error=last_error,
    )
