"""
Bounded retry with a fixed delay.

Used by both the handshake and the call paths: every attempt is a full
datagram exchange, so a lost request, a lost reply and a corrupted reply
are all handled by simply trying again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from miioapi.exceptions import ProtocolError, SocketError

# Module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (SocketError, ProtocolError)
"""Errors that trigger another attempt."""


async def retry(
    attempt_fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 1.0,
    *,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> T:
    """
    Run attempt_fn until it succeeds or attempts run out.

    attempts is the total number of runs; a value of 0 or less still runs
    once. Errors outside retry_on propagate immediately.

    Args:
        attempt_fn: Coroutine function performing one attempt.
        attempts: Total number of attempts.
        delay: Seconds to wait between attempts.
        retry_on: Exception types that trigger another attempt.
        log: Logger for retry messages (defaults to the module logger).

    Returns:
        Result of the first successful attempt.

    Raises:
        The last error raised by attempt_fn once attempts are exhausted.

    Example:
        >>> result = await retry(lambda: transport.send(...), attempts=3, delay=0.5)
    """
    log = log or logger
    remaining = max(attempts, 1)
    attempt = 0

    while True:
        remaining -= 1
        attempt += 1

        try:
            return await attempt_fn()
        except retry_on as e:
            if remaining == 0:
                log.debug("Attempt %d failed, giving up: %s", attempt, e)
                raise
            log.warning("Attempt %d failed (%s), %d left", attempt, e, remaining)

        if delay:
            await asyncio.sleep(delay)
