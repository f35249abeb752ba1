"""Tests for the live state observer."""

import datetime

import pytest

from syncloop.cluster import InMemoryCluster
from syncloop.config import ObserverConfig
from syncloop.exceptions import ClusterUnreachable
from syncloop.manifest import (
    TRACKING_LABEL,
    Application,
    ApplicationDestination,
    ApplicationSource,
    Resource,
)
from syncloop.observer import LiveSnapshot, LiveStateObserver
from syncloop.source_controller import DesiredManifestSet
from syncloop.store import InMemoryStore

APP = Application(
    name="guestbook",
    namespace="argocd",
    source=ApplicationSource(repo_url="https://example.com/deploy.git"),
    destination=ApplicationDestination(namespace="guestbook"),
)


def resource(kind: str, name: str, namespace: str, app: str | None) -> Resource:
    labels = {TRACKING_LABEL: app} if app else {}
    return Resource.parse_doc(
        {
            "apiVersion": "v1",
            "kind": kind,
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
        }
    )


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_object(APP)
    return store


@pytest.fixture
async def cluster() -> InMemoryCluster:
    cluster = InMemoryCluster()
    await cluster.apply(resource("ConfigMap", "settings", "guestbook", "guestbook"))
    await cluster.apply(resource("Service", "frontend", "web", "guestbook"))
    await cluster.apply(resource("ConfigMap", "other", "guestbook", "other-app"))
    await cluster.apply(resource("ConfigMap", "unmanaged", "guestbook", None))
    return cluster


async def test_snapshot(store: InMemoryStore, cluster: InMemoryCluster) -> None:
    """Test the snapshot holds the labeled resources of every namespace."""
    observer = LiveStateObserver(store, lambda _: cluster)
    snapshot = await observer.snapshot(APP)
    assert [str(r.resource_id) for r in snapshot.resources] == [
        "ConfigMap/guestbook/settings",
        "Service/web/frontend",
    ]
    assert not snapshot.stale
    assert store.get_artifact(APP.resource_id, LiveSnapshot) == snapshot
    assert snapshot.get(snapshot.resources[0].resource_id) == snapshot.resources[0]


async def test_selector_includes_desired_kinds(store: InMemoryStore) -> None:
    """Test kinds declared in the source are observed."""
    observer = LiveStateObserver(
        store, lambda _: InMemoryCluster(), ObserverConfig(watch_kinds=["ConfigMap"])
    )
    assert observer.selector(APP).kinds == ("ConfigMap",)
    store.set_artifact(
        APP.resource_id,
        DesiredManifestSet(
            repo_url=APP.source.repo_url,
            path=".",
            revision="abc",
            resources=(resource("Widget", "w", "guestbook", None),),
        ),
    )
    selector = observer.selector(APP)
    assert selector.kinds == ("ConfigMap", "Widget")
    assert selector.labels == {TRACKING_LABEL: "guestbook"}
    assert selector.namespace is None


async def test_selector_keeps_removed_kinds(store: InMemoryStore) -> None:
    """Test a kind dropped from the source is still observed for pruning."""
    cluster = InMemoryCluster()
    await cluster.apply(resource("Widget", "w", "guestbook", "guestbook"))
    observer = LiveStateObserver(
        store, lambda _: cluster, ObserverConfig(watch_kinds=["ConfigMap"])
    )
    widgets = DesiredManifestSet(
        repo_url=APP.source.repo_url,
        path=".",
        revision="abc",
        resources=(resource("Widget", "w", "guestbook", None),),
    )
    snapshot = await observer.snapshot(APP, widgets)
    assert [str(r.resource_id) for r in snapshot.resources] == ["Widget/guestbook/w"]

    store.set_artifact(
        APP.resource_id,
        DesiredManifestSet(repo_url=APP.source.repo_url, path=".", revision="def"),
    )
    assert observer.selector(APP).kinds == ("ConfigMap", "Widget")
    snapshot = await observer.snapshot(APP)
    assert [str(r.resource_id) for r in snapshot.resources] == ["Widget/guestbook/w"]

    observer.forget(APP.resource_id)
    store.remove_object(APP.resource_id)
    assert observer.selector(APP).kinds == ("ConfigMap",)




async def test_poll_failure_without_snapshot(store: InMemoryStore) -> None:
    """Test a failed first poll publishes an empty stale snapshot."""
    cluster = InMemoryCluster()
    cluster.unreachable = True
    observer = LiveStateObserver(store, lambda _: cluster)
    snapshot = await observer.poll(APP)
    assert snapshot.stale
    assert snapshot.resources == ()
    assert snapshot.error == "Unable to connect to the server"

    with pytest.raises(ClusterUnreachable):
        await observer.snapshot(APP)


async def test_staleness(store: InMemoryStore, cluster: InMemoryCluster) -> None:
    """Test the last snapshot is kept and marked stale after the threshold."""
    observer = LiveStateObserver(
        store, lambda _: cluster, ObserverConfig(staleness_threshold=60)
    )
    first = await observer.poll(APP)
    assert first.error is None

    cluster.unreachable = True
    soon = first.observed_at + datetime.timedelta(seconds=30)
    snapshot = await observer.poll(APP, now=soon)
    assert not snapshot.stale
    assert snapshot.error is not None
    assert snapshot.resources == first.resources
    assert snapshot.observed_at == first.observed_at

    later = first.observed_at + datetime.timedelta(seconds=61)
    snapshot = await observer.poll(APP, now=later)
    assert snapshot.stale
    assert snapshot.resources == first.resources
    assert store.get_artifact(APP.resource_id, LiveSnapshot) == snapshot

    cluster.unreachable = False
    snapshot = await observer.poll(APP)
    assert not snapshot.stale
    assert snapshot.error is None
