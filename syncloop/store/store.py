"""Store module for holding the state of registered applications."""

from abc import ABC, abstractmethod
from collections.abc import Callable, AsyncGenerator, Iterable
from enum import Enum
from typing import TypeVar, TYPE_CHECKING

from syncloop.exceptions import ErrorCause
from syncloop.manifest import Application, NamedResource, APPLICATION_KIND

from .artifact import Artifact
from .status import SyncPhase, StatusInfo

S = TypeVar("S", bound=Artifact)
V = TypeVar("V", bound=Application | StatusInfo | Artifact)


SUPPORTS_STATUS: set[str] = {APPLICATION_KIND}


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_REMOVED = "object_removed"
    STATUS_UPDATED = "status_updated"
    ARTIFACT_UPDATED = "artifact_updated"


class Store(ABC):
    """Abstract base class for the central application store with listener support.

    Objects are keyed by the application `NamedResource`. Each application
    holds at most one artifact of each artifact type (e.g. the latest live
    snapshot) which is replaced as a whole on every update.
    """

    @abstractmethod
    def add_object(self, obj: Application) -> None:
        """Add or replace an application in the store."""

    @abstractmethod
    def get_object(self, resource_id: NamedResource) -> Application | None:
        """Retrieve an application by resource identity."""

    @abstractmethod
    def remove_object(self, resource_id: NamedResource) -> None:
        """Remove an application along with its status and artifacts."""

    @abstractmethod
    def list_objects(self) -> list[Application]:
        """List all applications in the store."""

    @abstractmethod
    def update_status(
        self,
        resource_id: NamedResource,
        phase: SyncPhase,
        error: str | None = None,
        cause: ErrorCause | None = None,
    ) -> None:
        """Update the sync phase and optional error for an application."""

    @abstractmethod
    def get_status(self, resource_id: NamedResource) -> StatusInfo | None:
        """Retrieve the sync status for an application."""

    @abstractmethod
    def set_artifact(self, resource_id: NamedResource, artifact: Artifact) -> None:
        """Publish an artifact, replacing any previous artifact of the same type."""

    @abstractmethod
    def get_artifact(self, resource_id: NamedResource, cls: type[S]) -> S | None:
        """Retrieve the latest artifact of the given type for an application."""

    @abstractmethod
    def failed_applications(self) -> list[NamedResource]:
        """Return the applications whose last sync failed."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, V], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a store event.

        When `flush` is set the callback is invoked immediately for the
        current contents of the store.

        Returns a callable that can be called to remove the listener.
        """

    @abstractmethod
    async def watch_phase(
        self, resource_id: NamedResource, phases: Iterable[SyncPhase]
    ) -> StatusInfo:
        """
        Wait for the application to enter one of the specified phases.

        If the application is already in one of the phases, returns its
        StatusInfo immediately. The caller is expected to handle timeouts.

        Raises:
            asyncio.CancelledError: If the watch is cancelled.
        """

    @abstractmethod
    async def watch_added(self) -> AsyncGenerator[tuple[NamedResource, Application]]:
        """
        Watch for applications being added to the store.

        Yields the applications already present first, then each application
        as it is added.
        """
        if TYPE_CHECKING:
            yield None, None  # type: ignore[misc]
