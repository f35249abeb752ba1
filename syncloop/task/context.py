"""The TaskService of the current context."""

import contextlib
import contextvars
from collections.abc import Generator

from .service import TaskService, TaskServiceImpl

__all__: list[str] = []

_CURRENT: contextvars.ContextVar[TaskService | None] = contextvars.ContextVar(
    "task_service", default=None
)


def get_task_service() -> TaskService:
    """Return the TaskService of the current context, creating it on first use."""
    if (service := _CURRENT.get()) is None:
        service = TaskServiceImpl()
        _CURRENT.set(service)
    return service


@contextlib.contextmanager
def task_service_context(
    service: TaskService | None = None,
) -> Generator[TaskService, None, None]:
    """Use `service` (or a new TaskService) within the block.

    Tests use this to get a service whose tasks are isolated from any
    other test.
    """
    token = _CURRENT.set(service or TaskServiceImpl())
    try:
        yield get_task_service()
    finally:
        _CURRENT.reset(token)
