"""Artifact representation."""

from dataclasses import dataclass

from syncloop.store.artifact import Artifact
from syncloop.manifest import NamedResource, Resource


@dataclass(frozen=True, kw_only=True)
class DesiredManifestSet(Artifact):
    """The resources declared in a source at a specific revision.

    This object is written to the store when the source of an application is
    fetched. A revision's content never changes so the set is shared by
    every fetch of the same revision.
    """

    repo_url: str
    """URL of the source repository, for informational/logging purposes."""

    path: str
    """Directory in the repository the resources were read from."""

    revision: str
    """Immutable revision (e.g. commit SHA) the resources were read at."""

    resources: tuple[Resource, ...] = ()
    """Resources in manifest order."""

    @property
    def resource_ids(self) -> list[NamedResource]:
        return [resource.resource_id for resource in self.resources]
