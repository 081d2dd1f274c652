"""Supervisor for background tasks: session runners, handoff chains, scheduled runs."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from gym_agents.log import get_logger

logger = get_logger(__name__)


class TaskSupervisor:
    """Tracks every task it spawns. Failures are logged and optionally retried."""

    def __init__(self, retry_backoff: float = 1.0):
        self._tasks: set[asyncio.Task] = set()
        self._retry_backoff = retry_backoff
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        factory: Callable[[], Awaitable[Any]],
        name: str,
        retries: int = 0,
    ) -> asyncio.Task:
        """Run factory() in a tracked task. factory is re-invoked on each retry."""
        if self._closed:
            raise RuntimeError("Supervisor is shut down")
        task = asyncio.create_task(self._run(factory, name, retries), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(self, factory: Callable[[], Awaitable[Any]], name: str, retries: int) -> Any:
        attempt = 0
        while True:
            try:
                return await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.warning("supervised_task_retry", task=name, attempt=attempt, error=str(e))
                await asyncio.sleep(self._retry_backoff * attempt)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("supervised_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "supervised_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def join(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel outstanding tasks and wait for them to record their final state."""
        self._closed = True
        tasks = list(self._tasks)
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning("supervisor_shutdown_incomplete", pending=len(pending))
        logger.info("supervisor_stopped", cancelled=len(done))
