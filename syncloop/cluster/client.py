"""Interface to the cluster control plane."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from syncloop.manifest import ApplicationDestination, NamedResource, Resource

__all__ = ["ResourceSelector", "ClusterClient", "ClusterProvider"]


@dataclass(frozen=True)
class ResourceSelector:
    """Selects live resources by kind, namespace and labels."""

    kinds: tuple[str, ...] = ()
    """Kinds to query, empty matches any kind."""

    namespace: str | None = None
    """Namespace to query, None queries all namespaces."""

    labels: dict[str, str] = field(default_factory=dict, hash=False)
    """Labels a resource must carry."""

    def matches(self, resource: Resource) -> bool:
        """Return True if the resource is selected."""
        if self.kinds and resource.kind not in self.kinds:
            return False
        if (
            self.namespace
            and resource.namespace is not None
            and resource.namespace != self.namespace
        ):
            return False
        labels = resource.labels
        return all(labels.get(key) == value for key, value in self.labels.items())

    @property
    def label_selector(self) -> str:
        """Render the labels as a kubernetes label selector."""
        return ",".join(f"{key}={value}" for key, value in sorted(self.labels.items()))


class ClusterClient(ABC):
    """Reads and writes resources of one cluster.

    Implementations raise the `ClusterException` subclasses:
    `ClusterUnreachable`, `Unauthorized`, `ValidationRejected` and
    `RateLimited`.
    """

    @abstractmethod
    async def get(self, selector: ResourceSelector) -> list[Resource]:
        """Return the live resources matching the selector."""

    @abstractmethod
    async def get_resource(self, resource_id: NamedResource) -> Resource | None:
        """Return a single live resource or None if it does not exist."""

    @abstractmethod
    async def apply(self, resource: Resource) -> Resource:
        """Create or update a resource, returning the live object."""

    @abstractmethod
    async def delete(self, resource_id: NamedResource) -> None:
        """Delete a resource. Deleting a missing resource is not an error."""


ClusterProvider = Callable[[ApplicationDestination], ClusterClient]
"""Returns the client for the cluster of an application destination."""
