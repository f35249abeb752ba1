"""Task tracking service for syncloop.

This service provides a simple way to track and wait for asynchronous tasks,
including long running periodic loops.
"""

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
import logging
from typing import Any, Coroutine
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking and waiting for asynchronous tasks."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task.

        Args:
            coro: The coroutine to run as a task

        Returns:
            The created task
        """

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new long running background task.

        Background tasks are not awaited by `block_till_done`.
        """

    @abstractmethod
    def create_periodic_task(
        self,
        func: Callable[[], Awaitable[None]],
        interval: float,
        name: str | None = None,
    ) -> asyncio.Task[None]:
        """Create a background task calling `func` every `interval` seconds.

        The first call happens immediately. An exception raised by `func`
        is logged and the loop continues on the next tick.
        """

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait for all active non-background tasks to complete.

        It's safe to call even if new tasks are created while waiting.
        """

    @abstractmethod
    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for them to finish."""

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Get the number of active non-background tasks."""


class TaskServiceImpl(TaskService):
    """Service for tracking and waiting for asynchronous tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._active_tasks: set[asyncio.Task[Any]] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task."""
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._active_tasks))
        return task

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new background task."""
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._background_tasks))
        return task

    def create_periodic_task(
        self,
        func: Callable[[], Awaitable[None]],
        interval: float,
        name: str | None = None,
    ) -> asyncio.Task[None]:
        """Create a background task calling `func` every `interval` seconds."""
        if interval <= 0:
            raise ValueError(f"Periodic task interval must be positive: {interval}")
        return self.create_background_task(self._periodic(func, interval, name), name)

    async def _periodic(
        self,
        func: Callable[[], Awaitable[None]],
        interval: float,
        name: str | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            start = loop.time()
            try:
                await func()
            except asyncio.CancelledError:
                raise
            except Exception:
                _LOGGER.exception("Periodic task %s failed", name or func)
            elapsed = loop.time() - start
            await asyncio.sleep(max(0.0, interval - elapsed))

    def _task_done(
        self, task_set: set[asyncio.Task[Any]], task: asyncio.Task[Any]
    ) -> None:
        """Callback when a task is done."""
        try:
            # This will raise any exception that occurred in the task
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)
        finally:
            task_set.discard(task)

    async def block_till_done(self) -> None:
        """Wait for all active tasks to complete."""
        while active_tasks := list(self._active_tasks):
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            await asyncio.gather(*active_tasks, return_exceptions=True)
        await asyncio.sleep(0)

    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for them to finish."""
        tasks = list(self._active_tasks | self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            _LOGGER.debug("Cancelling %d tasks", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_num_active_tasks(self) -> int:
        """Get the number of active tasks."""
        return len(self._active_tasks)
