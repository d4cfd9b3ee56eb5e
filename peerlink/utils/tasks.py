"""Run the relay server's periodic tasks in the background."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import traceback
from typing import Any
from typing import Callable
from typing import Coroutine

logger = logging.getLogger(__name__)


async def _log_traceback_on_error(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> None:
    try:
        await coro(*args, **kwargs)
    except Exception:
        logger.error(traceback.format_exc())
        raise


def exit_on_error(task: asyncio.Task[Any]) -> None:
    """Task done callback that raises SystemExit if the task failed."""
    if task.cancelled() or task.exception() is None:
        return
    logger.error(
        f'Background task {task.get_name()!r} failed: {task.exception()!r}',
    )
    raise SystemExit(1)


def spawn_guarded_background_task(
    coro: Callable[..., Coroutine[Any, Any, None]],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Task[Any]:
    """Run a coroutine in the background and exit the process if it fails.

    The idle sweeper and peer logger are never awaited while the server
    runs, so a failure inside one would otherwise go unnoticed and, for the
    sweeper, leave idle peers connected forever. The traceback of any
    exception is logged and the done callback
    [`exit_on_error()`][peerlink.utils.tasks.exit_on_error] raises
    [`SystemExit`][SystemExit].

    Args:
        coro: Coroutine to run as task.
        args: Positional arguments for the coroutine.
        kwargs: Keyword arguments for the coroutine.

    Returns:
        Asyncio task handle.
    """
    task = asyncio.create_task(_log_traceback_on_error(coro, *args, **kwargs))
    task.add_done_callback(exit_on_error)
    return task


async def cancel_background_task(task: asyncio.Task[Any]) -> None:
    """Cancel a background task and wait for it to finish."""
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
