"""Task tracking module for syncloop.

This module provides a task tracking service that allows controllers to
track and wait for asynchronous tasks, run periodic background work, and a
keyed lock for per-application mutual exclusion.
"""

from .context import task_service_context, get_task_service
from .keyed_lock import KeyedLock
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService", "KeyedLock"]
