"""Readiness polling for asynchronous remote state.

A probe that exits non-zero only means "not ready yet" and polling goes on.
Any other failure (transport, provisioning) aborts the poll immediately.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from deskbox.domain.model.sandbox.exceptions import CommandExitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 10.0
DEFAULT_INTERVAL = 0.5


async def wait_until(
    probe: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    timeout: float = DEFAULT_TIMEOUT,
    interval: float = DEFAULT_INTERVAL,
) -> bool:
    """
    Repeatedly run a probe until its result satisfies a predicate.

    Args:
        probe: Coroutine factory running the readiness probe
        predicate: Evaluated against each probe result
        timeout: Seconds after which polling gives up
        interval: Seconds to sleep between attempts

    Returns:
        True on the first successful predicate, False once timeout elapsed

    Raises:
        Any non-CommandExitError raised by the probe
    """
    started = time.monotonic()
    attempt = 0

    while True:
        attempt += 1
        try:
            if predicate(await probe()):
                logger.debug(f"Readiness probe succeeded after {attempt} attempt(s)")
                return True
        except CommandExitError as e:
            logger.debug(f"Readiness probe attempt {attempt} not ready: exit code {e.exit_code}")

        remaining = timeout - (time.monotonic() - started)
        if remaining <= 0:
            logger.debug(f"Readiness probe timed out after {attempt} attempt(s)")
            return False

        await asyncio.sleep(min(interval, remaining))
