"""Sync scheduler.

The scheduler owns the sync state machine of every application:

    Idle -> Queued -> Syncing -> Idle
                      Syncing -> Failed -> Idle

At most one operation per application is Syncing. A trigger received while
an operation is Queued or Syncing is coalesced into a single pending
request that keeps the highest priority cause and the latest requested
revision. Operations of different applications run concurrently.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
import logging

from .config import SchedulerConfig
from .context import trace_context
from .exceptions import (
    ApplicationNotFoundError,
    ErrorCause,
    PartialApplyFailure,
    SyncLoopException,
)
from .manifest import NamedResource
from .operation import OperationPhase, SyncOperation, TriggerCause
from .store import StatusInfo, Store, SyncPhase
from .task import KeyedLock, TaskService, get_task_service

__all__ = ["SyncScheduler", "TriggerResult", "Runner"]

_LOGGER = logging.getLogger(__name__)


class TriggerResult(StrEnum):
    """Outcome of a trigger."""

    QUEUED = "Queued"
    """A new operation was queued."""

    COALESCED = "Coalesced"
    """The trigger was merged into the pending request."""


Runner = Callable[[SyncOperation], Awaitable[None]]
"""Performs an operation. Raising a SyncLoopException fails the operation."""

Listener = Callable[[SyncOperation], Awaitable[None]]


@dataclass
class _Request:
    cause: TriggerCause
    revision: str | None = None
    waiters: list[asyncio.Future[SyncOperation]] = field(default_factory=list)

    def merge(self, cause: TriggerCause, revision: str | None) -> None:
        if cause.priority > self.cause.priority:
            self.cause = cause
        if revision is not None:
            self.revision = revision


class SyncScheduler:
    """Queues and runs sync operations, one at a time per application."""

    def __init__(
        self,
        store: Store,
        runner: Runner,
        task_service: TaskService | None = None,
        config: SchedulerConfig | None = None,
        listener: Listener | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: The store holding applications and their sync phase
            runner: Performs an admitted operation
            task_service: Runs the per application queues
            config: Scheduler configuration
            listener: Called with every finished operation
        """
        self._store = store
        self._runner = runner
        self._task_service = task_service or get_task_service()
        self._config = config or SchedulerConfig()
        self._listener = listener
        self._lock: KeyedLock[NamedResource] = KeyedLock()
        self._pending: dict[NamedResource, _Request] = {}
        self._current: dict[NamedResource, SyncOperation] = {}
        self._history: dict[NamedResource, deque[SyncOperation]] = {}
        self._queues: dict[NamedResource, asyncio.Task[None]] = {}

    def trigger(
        self,
        resource_id: NamedResource,
        cause: TriggerCause,
        revision: str | None = None,
    ) -> TriggerResult:
        """Request a sync of the application.

        Raises:
            ApplicationNotFoundError: If the application is not registered
        """
        return self._enqueue(resource_id, cause, revision)

    async def sync(
        self,
        resource_id: NamedResource,
        cause: TriggerCause = TriggerCause.MANUAL,
        revision: str | None = None,
    ) -> SyncOperation:
        """Request a sync and wait for the operation that serves it."""
        waiter: asyncio.Future[SyncOperation] = (
            asyncio.get_running_loop().create_future()
        )
        self._enqueue(resource_id, cause, revision, waiter)
        return await waiter

    def _enqueue(
        self,
        resource_id: NamedResource,
        cause: TriggerCause,
        revision: str | None,
        waiter: asyncio.Future[SyncOperation] | None = None,
    ) -> TriggerResult:
        if self._store.get_object(resource_id) is None:
            raise ApplicationNotFoundError(f"Application {resource_id} not found")
        if (pending := self._pending.get(resource_id)) is not None:
            pending.merge(cause, revision)
            if waiter is not None:
                pending.waiters.append(waiter)
            _LOGGER.debug(
                "Coalesced %s trigger of %s into pending request", cause, resource_id
            )
            return TriggerResult.COALESCED
        request = _Request(cause, revision)
        if waiter is not None:
            request.waiters.append(waiter)
        self._pending[resource_id] = request
        if resource_id in self._queues:
            _LOGGER.debug(
                "%s trigger of %s pending on current sync", cause, resource_id
            )
            return TriggerResult.COALESCED
        self._store.update_status(resource_id, SyncPhase.QUEUED)
        self._queues[resource_id] = self._task_service.create_task(
            self._drain(resource_id), name=f"sync-{resource_id}"
        )
        _LOGGER.info("Queued %s sync of %s", cause, resource_id)
        return TriggerResult.QUEUED

    def cancel(self, resource_id: NamedResource) -> bool:
        """Drop the queued request of the application.

        An operation that is already Syncing is not affected. Returns True
        if a request was dropped.
        """
        if (request := self._pending.pop(resource_id, None)) is None:
            return False
        for waiter in request.waiters:
            waiter.cancel()
        if resource_id not in self._current:
            self._set_idle(resource_id)
        _LOGGER.info("Cancelled queued sync of %s", resource_id)
        return True

    async def _drain(self, resource_id: NamedResource) -> None:
        try:
            while (request := self._pending.pop(resource_id, None)) is not None:
                async with self._lock.hold(resource_id):
                    await self._run(resource_id, request)
        finally:
            self._queues.pop(resource_id, None)

    async def _run(self, resource_id: NamedResource, request: _Request) -> None:
        if self._store.get_object(resource_id) is None:
            _LOGGER.debug("Dropping sync of removed application %s", resource_id)
            for waiter in request.waiters:
                waiter.cancel()
            return
        op = SyncOperation(resource_id, request.cause, request.revision)
        self._current[resource_id] = op
        self._set_phase(resource_id, SyncPhase.SYNCING)
        with trace_context(f"Sync {resource_id.namespaced_name}"):
            try:
                await self._runner(op)
            except PartialApplyFailure as err:
                op.results = list(err.results)
                op.fail(str(err), err.error_cause)
            except SyncLoopException as err:
                op.fail(str(err), err.cause)
            except Exception as err:
                _LOGGER.exception("Unexpected error syncing %s", resource_id)
                op.fail(str(err), ErrorCause.UNKNOWN)
            else:
                if not op.done:
                    op.succeed()
            finally:
                del self._current[resource_id]
        self._record(op)
        if op.phase == OperationPhase.FAILED:
            _LOGGER.warning(
                "Sync of %s failed (%s): %s", resource_id, op.error_cause, op.error
            )
            self._set_phase(resource_id, SyncPhase.FAILED, op.error, op.error_cause)
        else:
            _LOGGER.info(
                "Sync of %s succeeded at %s", resource_id, op.resolved_revision
            )
        if resource_id in self._pending:
            self._set_phase(resource_id, SyncPhase.QUEUED)
        else:
            self._set_idle(resource_id)
        for waiter in request.waiters:
            if not waiter.done():
                waiter.set_result(op)
        if self._listener is not None:
            try:
                await self._listener(op)
            except Exception:
                _LOGGER.exception("Sync listener failed for %s", resource_id)

    def _record(self, op: SyncOperation) -> None:
        history = self._history.get(op.application)
        if history is None:
            history = deque(maxlen=self._config.history_limit)
            self._history[op.application] = history
        history.append(op)

    def _set_phase(
        self,
        resource_id: NamedResource,
        phase: SyncPhase,
        error: str | None = None,
        cause: ErrorCause | None = None,
    ) -> None:
        if self._store.get_object(resource_id) is not None:
            self._store.update_status(resource_id, phase, error, cause)

    def _set_idle(self, resource_id: NamedResource) -> None:
        """Return to Idle, keeping the error of a failed last operation."""
        last = self.last_operation(resource_id)
        if last is not None and last.phase == OperationPhase.FAILED:
            self._set_phase(resource_id, SyncPhase.IDLE, last.error, last.error_cause)
        else:
            self._set_phase(resource_id, SyncPhase.IDLE)

    def phase(self, resource_id: NamedResource) -> SyncPhase:
        """Return the current phase of the application."""
        if (status := self._store.get_status(resource_id)) is None:
            return SyncPhase.IDLE
        return status.phase

    def current(self, resource_id: NamedResource) -> SyncOperation | None:
        """Return the Syncing operation of the application, if any."""
        return self._current.get(resource_id)

    def is_queued(self, resource_id: NamedResource) -> bool:
        """Return True if a request is waiting to run."""
        return resource_id in self._pending

    def history(self, resource_id: NamedResource) -> list[SyncOperation]:
        """Return the finished operations, oldest first."""
        return list(self._history.get(resource_id, ()))

    def last_operation(self, resource_id: NamedResource) -> SyncOperation | None:
        """Return the most recently finished operation."""
        if history := self._history.get(resource_id):
            return history[-1]
        return None

    async def wait_idle(self, resource_id: NamedResource) -> StatusInfo:
        """Wait until the application has no queued or running operation."""
        while (task := self._queues.get(resource_id)) is not None:
            await asyncio.shield(task)
        return self._store.get_status(resource_id) or StatusInfo(SyncPhase.IDLE)

    def remove(self, resource_id: NamedResource) -> None:
        """Forget an application, dropping its queued request and history."""
        self.cancel(resource_id)
        self._history.pop(resource_id, None)

    async def close(self) -> None:
        """Drop queued requests and wait for running operations."""
        for resource_id in list(self._pending):
            self.cancel(resource_id)
        if tasks := list(self._queues.values()):
            await asyncio.gather(*tasks, return_exceptions=True)
