"""Live state observer.

The observer queries the destination cluster for the resources carrying the
tracking label of an application and publishes the result to the store as
a `LiveSnapshot`. A failed poll never raises: the previous snapshot is kept
with the error attached, and it is marked stale once it is older than the
staleness threshold.
"""

from dataclasses import dataclass, replace
import datetime
import logging

from .cluster import ClusterProvider, ResourceSelector
from .config import ObserverConfig
from .exceptions import SyncLoopException
from .manifest import Application, NamedResource, Resource
from .source_controller import DesiredManifestSet
from .store import Artifact, Store

__all__ = ["LiveSnapshot", "LiveStateObserver"]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class LiveSnapshot(Artifact):
    """The live resources of an application at a point in time.

    A snapshot is never modified; a new one is published for every poll.
    """

    resources: tuple[Resource, ...] = ()
    """Live resources sorted by identifier."""

    stale: bool = False
    """Set when the cluster could not be queried for longer than the threshold."""

    error: str | None = None
    """The error of the last failed poll, if the latest poll failed."""

    @property
    def observed_at(self) -> datetime.datetime:
        """Return when the resources were read from the cluster."""
        return self.created_at

    def get(self, resource_id: NamedResource) -> Resource | None:
        """Return the live resource with the identifier, if present."""
        for resource in self.resources:
            if resource.resource_id == resource_id:
                return resource
        return None


class LiveStateObserver:
    """Publishes snapshots of the live state of applications."""

    def __init__(
        self,
        store: Store,
        cluster_provider: ClusterProvider,
        config: ObserverConfig | None = None,
    ) -> None:
        self._store = store
        self._cluster_provider = cluster_provider
        self._config = config or ObserverConfig()
        self._kinds: dict[NamedResource, set[str]] = {}

    def selector(
        self, app: Application, desired: DesiredManifestSet | None = None
    ) -> ResourceSelector:
        """Return the selector for the live resources of the application.

        Kinds are never dropped from the selector of an application: a kind
        removed from the desired state must still be observed so that its
        live resources can be pruned.
        """
        kinds = self._kinds.setdefault(app.resource_id, set())
        kinds.update(self._config.watch_kinds)
        for manifests in (
            desired,
            self._store.get_artifact(app.resource_id, DesiredManifestSet),
        ):
            if manifests is not None:
                kinds.update(resource.kind for resource in manifests.resources)
        if previous := self._store.get_artifact(app.resource_id, LiveSnapshot):
            kinds.update(resource.kind for resource in previous.resources)
        return ResourceSelector(
            kinds=tuple(sorted(kinds)),
            labels=app.tracking_labels,
        )

    def forget(self, resource_id: NamedResource) -> None:
        """Drop the kinds remembered for a removed application."""
        self._kinds.pop(resource_id, None)

    async def snapshot(
        self, app: Application, desired: DesiredManifestSet | None = None
    ) -> LiveSnapshot:
        """Query the cluster and publish a new snapshot.

        The kinds of `desired` are observed in addition to those of the
        stored desired state.

        Raises:
            ClusterException: If the cluster could not be queried
        """
        client = self._cluster_provider(app.destination)
        resources = await client.get(self.selector(app, desired))
        snapshot = LiveSnapshot(
            resources=tuple(sorted(resources, key=lambda r: r.resource_id))
        )
        self._store.set_artifact(app.resource_id, snapshot)
        _LOGGER.debug(
            "Observed %d live resources for %s", len(resources), app.resource_id
        )
        return snapshot

    async def poll(
        self, app: Application, now: datetime.datetime | None = None
    ) -> LiveSnapshot:
        """Refresh the snapshot of the application, recording any failure."""
        try:
            return await self.snapshot(app)
        except SyncLoopException as err:
            _LOGGER.warning(
                "Unable to observe live state of %s: %s", app.resource_id, err
            )
            error = str(err)
        previous = self._store.get_artifact(app.resource_id, LiveSnapshot)
        if previous is None:
            snapshot = LiveSnapshot(stale=True, error=error)
        else:
            threshold = datetime.timedelta(seconds=self._config.staleness_threshold)
            stale = previous.age(now) >= threshold
            if stale and not previous.stale:
                _LOGGER.warning(
                    "Live state of %s is stale, last observed at %s",
                    app.resource_id,
                    previous.observed_at,
                )
            snapshot = replace(previous, stale=stale, error=error)
        self._store.set_artifact(app.resource_id, snapshot)
        return snapshot
