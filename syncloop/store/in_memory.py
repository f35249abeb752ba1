"""Module for in memory application store."""

import asyncio
from collections import defaultdict
from collections.abc import Callable, AsyncGenerator, Iterable
from typing import Any, TypeVar, DefaultDict

import logging

from syncloop.exceptions import ErrorCause
from syncloop.manifest import Application, NamedResource

from .artifact import Artifact
from .status import SyncPhase, StatusInfo
from .store import Store, StoreEvent, SUPPORTS_STATUS


_LOGGER = logging.getLogger(__name__)

S = TypeVar("S", bound=Artifact)
V = TypeVar("V", bound=Application | StatusInfo | Artifact)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Stores applications, sync status, and artifacts keyed by NamedResource.
    Supports event listeners for object, status, and artifact changes.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, Application] = {}
        self._status: dict[NamedResource, StatusInfo] = {}
        self._artifacts: DefaultDict[NamedResource, dict[type[Artifact], Artifact]] = (
            defaultdict(dict)
        )
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )

    def add_object(self, obj: Application) -> None:
        """Add or replace an application in the store."""
        if not isinstance(obj, Application):
            raise ValueError(
                f"Object must be an Application (was {obj.__class__.__name__})"
            )
        resource_id = obj.resource_id
        if (existing := self._objects.get(resource_id)) is not None:
            if existing.to_dict() == obj.to_dict():
                _LOGGER.debug(
                    "Object %s already exists in store, skipping", resource_id
                )
                return
            _LOGGER.debug("Updating existing object %s in store", resource_id)
        else:
            _LOGGER.debug("Adding object %s to store", resource_id)

        self._objects[resource_id] = obj
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, obj)

    def get_object(self, resource_id: NamedResource) -> Application | None:
        """Retrieve an application by resource identity."""
        return self._objects.get(resource_id)

    def remove_object(self, resource_id: NamedResource) -> None:
        """Remove an application along with its status and artifacts."""
        if (obj := self._objects.pop(resource_id, None)) is None:
            return
        self._status.pop(resource_id, None)
        self._artifacts.pop(resource_id, None)
        _LOGGER.debug("Removed object %s from store", resource_id)
        self._fire_event(StoreEvent.OBJECT_REMOVED, resource_id, obj)

    def list_objects(self) -> list[Application]:
        """List all applications in the store."""
        return list(self._objects.values())

    def update_status(
        self,
        resource_id: NamedResource,
        phase: SyncPhase,
        error: str | None = None,
        cause: ErrorCause | None = None,
    ) -> None:
        """Update the sync phase and optional error for an application."""
        if resource_id.kind not in SUPPORTS_STATUS:
            raise ValueError(
                f"Resource kind {resource_id.kind} does not support status updates"
            )
        if phase == SyncPhase.FAILED:
            _LOGGER.error(
                "Application %s status %s with error: %s",
                resource_id.namespaced_name,
                phase,
                error,
            )
        else:
            _LOGGER.debug(
                "Updating status for application %s to %s (%s)",
                resource_id.namespaced_name,
                phase,
                error,
            )
        self._status[resource_id] = StatusInfo(phase=phase, error=error, cause=cause)
        self._fire_event(
            StoreEvent.STATUS_UPDATED, resource_id, self._status[resource_id]
        )

    def get_status(self, resource_id: NamedResource) -> StatusInfo | None:
        """Retrieve the sync status for an application."""
        return self._status.get(resource_id)

    def set_artifact(self, resource_id: NamedResource, artifact: Artifact) -> None:
        """Publish an artifact, replacing any previous artifact of the same type."""
        if not isinstance(artifact, Artifact):
            raise ValueError(
                f"Artifact for {resource_id.namespaced_name} is not an"
                f" {Artifact.__name__} (was {artifact.__class__.__name__})"
            )
        self._artifacts[resource_id][type(artifact)] = artifact
        self._fire_event(StoreEvent.ARTIFACT_UPDATED, resource_id, artifact)

    def get_artifact(self, resource_id: NamedResource, cls: type[S]) -> S | None:
        """Retrieve the latest artifact of the given type for an application."""
        artifacts = self._artifacts.get(resource_id)
        if not artifacts:
            return None
        if (artifact := artifacts.get(cls)) is not None:
            return artifact  # type: ignore[return-value]
        for value in artifacts.values():
            if isinstance(value, cls):
                return value
        return None

    def failed_applications(self) -> list[NamedResource]:
        """Return the applications whose last sync failed."""
        return [
            resource_id
            for resource_id, status_info in self._status.items()
            if status_info.phase == SyncPhase.FAILED
            or (status_info.phase == SyncPhase.IDLE and status_info.error)
        ]

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, V], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a store event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for rid, obj in list(self._objects.items()):
                if event == StoreEvent.OBJECT_ADDED:
                    callback(rid, obj)  # type: ignore[arg-type]
                elif event == StoreEvent.STATUS_UPDATED:
                    if status := self._status.get(rid):
                        callback(rid, status)  # type: ignore[arg-type]
                elif event == StoreEvent.ARTIFACT_UPDATED:
                    for artifact in list(self._artifacts.get(rid, {}).values()):
                        callback(rid, artifact)  # type: ignore[arg-type]

        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)

    async def watch_phase(
        self, resource_id: NamedResource, phases: Iterable[SyncPhase]
    ) -> StatusInfo:
        """Wait for the application to enter one of the specified phases."""
        wanted = set(phases)
        current_status_info = self.get_status(resource_id)
        if current_status_info and current_status_info.phase in wanted:
            return current_status_info

        future: asyncio.Future[StatusInfo] = asyncio.get_running_loop().create_future()

        def callback(fired_resource_id: NamedResource, status_info: StatusInfo) -> None:
            if (
                fired_resource_id == resource_id
                and status_info.phase in wanted
                and not future.done()
            ):
                future.set_result(status_info)

        remove_listener = self.add_listener(StoreEvent.STATUS_UPDATED, callback)
        try:
            return await future
        except asyncio.CancelledError:
            _LOGGER.debug("watch_phase for %s cancelled.", resource_id)
            raise
        finally:
            remove_listener()

    async def watch_added(self) -> AsyncGenerator[tuple[NamedResource, Application]]:
        """Watch for applications being added to the store."""
        queue: asyncio.Queue[tuple[NamedResource, Application]] = asyncio.Queue()

        def callback(added_resource_id: NamedResource, added_obj: Application) -> None:
            queue.put_nowait((added_resource_id, added_obj))

        # Flushing yields existing objects first without missing concurrent adds
        remove_listener = self.add_listener(
            StoreEvent.OBJECT_ADDED, callback, flush=True
        )
        try:
            while True:
                resource_id, obj = await queue.get()
                yield resource_id, obj
                queue.task_done()
        except asyncio.CancelledError:
            _LOGGER.debug("watch_added cancelled.")
            raise
        finally:
            _LOGGER.debug("Cleaning up listener for watch_added")
            remove_listener()
