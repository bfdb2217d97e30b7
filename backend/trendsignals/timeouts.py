from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from .logging_utils import resolve_logger

T = TypeVar("T")

# Strong references to abandoned tasks so they are not garbage collected mid-flight.
_ABANDONED: set[asyncio.Future[Any]] = set()


class DeadlineExceeded(TimeoutError):
    def __init__(self, message: str, seconds: float) -> None:
        super().__init__(message)
        self.message = message
        self.seconds = seconds


def _drop_abandoned(task: asyncio.Future[Any]) -> None:
    _ABANDONED.discard(task)
    if task.cancelled():
        return
    # Late results and late errors are read here and thrown away.
    task.exception()


async def with_deadline(
    operation: Awaitable[T],
    seconds: float,
    on_timeout_message: str,
    logger: logging.Logger | None = None,
) -> T:
    """Race ``operation`` against a timer.

    If the timer wins, ``DeadlineExceeded`` is raised and the operation is left
    running unobserved; whatever it produces later is discarded. A deadline of
    zero or less disables the timer.
    """
    log = resolve_logger(logger, __name__)
    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds if seconds and seconds > 0 else None)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    _ABANDONED.add(task)
    task.add_done_callback(_drop_abandoned)
    log.warning(f"Deadline of {seconds:.1f}s exceeded: {on_timeout_message}")
    raise DeadlineExceeded(on_timeout_message, seconds)


def abandoned_count() -> int:
    return len(_ABANDONED)
