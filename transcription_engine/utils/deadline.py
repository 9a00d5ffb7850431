"""Deadline racing for externally-initiated work.

The work runs against a loop timer. Whichever finishes first determines
the outcome; if the timer wins, the work is cancelled.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from transcription_engine.utils.errors import TranscriptionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def race_deadline(
    work: Awaitable[T],
    timeout: float,
    label: str = "operation",
    on_timeout: Callable[[], Any] | None = None,
) -> T:
    """Await ``work`` unless ``timeout`` seconds pass first.

    Args:
        work: Coroutine or future performing the operation.
        timeout: Deadline in seconds.
        label: Human-readable name used in the timeout message.
        on_timeout: Optional cleanup hook (sync or async) run after the
            work has been cancelled because the timer won.

    Returns:
        The work's result.

    Raises:
        TranscriptionTimeoutError: If the timer finished first.
    """
    loop = asyncio.get_running_loop()
    work_task = asyncio.ensure_future(work)
    timer = loop.create_future()
    handle = loop.call_later(
        timeout, lambda: timer.done() or timer.set_result(None)
    )

    try:
        done, _ = await asyncio.wait(
            {work_task, timer}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        work_task.cancel()
        await asyncio.gather(work_task, return_exceptions=True)
        raise
    finally:
        handle.cancel()

    if work_task in done:
        return work_task.result()

    work_task.cancel()
    await asyncio.gather(work_task, return_exceptions=True)
    logger.warning("%s timed out after %.1fs", label, timeout)

    if on_timeout is not None:
        outcome = on_timeout()
        if inspect.isawaitable(outcome):
            await outcome

    raise TranscriptionTimeoutError(
        f"{label} timed out after {timeout:.0f}s", seconds=timeout
    )
