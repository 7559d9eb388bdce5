"""Supervised fire-and-forget background work.

Webhook handlers run after the HTTP acknowledgement has been sent. Each one
is a task spawned here: at most `max_concurrent` run at once (the others wait
for a slot), errors are logged and dropped, and nothing is ever reported back
to the request that spawned the task.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from src.bot.errors import BotError, MappingError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class TaskSupervisor:
    def __init__(self, max_concurrent: int = 16):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._semaphore = asyncio.Semaphore(max_concurrent)
        # Strong references: the event loop only keeps weak ones
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[None]:
        """Schedule `coro` in the background and return immediately."""
        task = asyncio.create_task(self._run(name, coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            async with self._semaphore:
                await coro
        except MappingError as e:
            logger.warning(f"No mapping for background task, nothing done: {e}", task=name)
        except BotError as e:
            logger.error(f"Background task failed: {e}", task=name)
        except asyncio.CancelledError:
            # Never started if cancelled while waiting for a slot
            coro.close()
            logger.info("Background task cancelled", task=name)
            raise
        except Exception as e:
            logger.error(f"Background task crashed: {e}", task=name, exc_info=True)
        else:
            logger.debug("Background task completed", task=name)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for running tasks, cancelling whatever is left after `timeout`."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("Waiting for background tasks", count=len(tasks))
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled background tasks on shutdown", count=len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
