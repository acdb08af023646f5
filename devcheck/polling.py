"""
Polling and deadline primitives.

Readiness waits and other "check until true" loops go through ``poll_until``
so that interval, deadline and error handling behave the same everywhere.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from devcheck.common.exceptions import DevCheckError, ExecutionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StopPolling(Exception):
    """
    Raised by a poll check to give up before the deadline.

    Used when the awaited condition can no longer become true, e.g. the
    container exited while waiting for it to become ready.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    interval: float,
    timeout: float,
    description: str = "condition",
    error_interval: float | None = None,
) -> bool:
    """
    Call ``check`` every ``interval`` seconds until it returns True.

    Parameters
    ----------
    check : callable
        Async predicate. May raise StopPolling to abort.
    interval : float
        Seconds between checks
    timeout : float
        Overall deadline in seconds, including time spent inside ``check``
    description : str
        What is being waited for (logging only)
    error_interval : float, optional
        Seconds to wait after a check raised a DevCheckError
        (default: ``interval``)

    Returns
    -------
    bool
        True if the check succeeded before the deadline, False on timeout or
        StopPolling

    Examples
    --------
    >>> async def ready():
    ...     return True
    >>> asyncio.run(poll_until(ready, interval=0.1, timeout=1.0))
    True
    """
    attempts = 0
    try:
        async with asyncio.timeout(timeout):
            while True:
                attempts += 1
                delay = interval
                try:
                    if await check():
                        logger.debug(f"{description} satisfied after {attempts} attempt(s)")
                        return True
                except StopPolling as e:
                    logger.info(f"Stopped waiting for {description}: {e.reason}")
                    return False
                except DevCheckError as e:
                    logger.warning(f"Check for {description} failed (attempt {attempts}): {e.message}")
                    delay = error_interval if error_interval is not None else interval
                await asyncio.sleep(delay)
    except TimeoutError:
        logger.warning(f"Timed out after {timeout}s waiting for {description} ({attempts} attempt(s))")
        return False


async def run_with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await ``awaitable`` under a hard deadline.

    Raises
    ------
    ExecutionTimeoutError
        If the deadline expires; the awaitable is cancelled
    """
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as e:
        raise ExecutionTimeoutError(
            f"{operation} timed out after {timeout}s",
            details={"operation": operation, "timeout": timeout},
        ) from e
