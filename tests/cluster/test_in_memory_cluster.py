"""Tests for the in-memory cluster."""

import pytest

from syncloop.cluster import InMemoryCluster, ResourceSelector
from syncloop.exceptions import ClusterUnreachable, RateLimited, ValidationRejected
from syncloop.manifest import NamedResource, Resource


def deployment(replicas: int = 1, labels: dict[str, str] | None = None) -> Resource:
    return Resource.parse_doc(
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "web", "namespace": "default", "labels": labels or {}},
            "spec": {"replicas": replicas},
            "status": {"readyReplicas": 99},
        }
    )


WEB = NamedResource("Deployment", "default", "web")


async def test_apply_populates_server_fields() -> None:
    """Test the cluster populates server side fields and drops the status."""
    cluster = InMemoryCluster()
    live = await cluster.apply(deployment())
    metadata = live.body["metadata"]
    assert metadata["uid"]
    assert metadata["generation"] == 1
    assert metadata["resourceVersion"]
    assert metadata["creationTimestamp"]
    assert live.status == {}
    assert WEB in cluster
    assert cluster.applied == [WEB]


async def test_generation() -> None:
    """Test the generation changes only when the spec changes."""
    cluster = InMemoryCluster()
    first = await cluster.apply(deployment())
    relabeled = await cluster.apply(deployment(labels={"tier": "web"}))
    assert relabeled.body["metadata"]["generation"] == 1
    assert relabeled.body["metadata"]["uid"] == first.body["metadata"]["uid"]
    assert (
        relabeled.body["metadata"]["resourceVersion"]
        != first.body["metadata"]["resourceVersion"]
    )
    scaled = await cluster.apply(deployment(replicas=3))
    assert scaled.body["metadata"]["generation"] == 2


async def test_status_is_kept() -> None:
    """Test the status subresource survives an apply."""
    cluster = InMemoryCluster()
    await cluster.apply(deployment())
    cluster.set_status(WEB, {"readyReplicas": 1})
    live = await cluster.apply(deployment(replicas=2))
    assert live.status == {"readyReplicas": 1}

    with pytest.raises(KeyError):
        cluster.set_status(NamedResource("Deployment", "default", "api"), {})


async def test_auto_ready() -> None:
    """Test workloads report ready replicas when auto ready is set."""
    cluster = InMemoryCluster(auto_ready=True)
    live = await cluster.apply(deployment(replicas=3))
    assert live.status["readyReplicas"] == 3
    assert live.status["observedGeneration"] == 1


async def test_get_by_selector() -> None:
    """Test listing resources by kind and label."""
    cluster = InMemoryCluster()
    await cluster.apply(deployment(labels={"app": "a"}))
    await cluster.apply(
        Resource.parse_doc(
            {
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": "default", "labels": {"app": "a"}},
            }
        )
    )
    selected = await cluster.get(ResourceSelector(labels={"app": "a"}))
    assert [str(r.resource_id) for r in selected] == [
        "Deployment/default/web",
        "Namespace/default",
    ]
    selected = await cluster.get(
        ResourceSelector(kinds=("Deployment",), namespace="other")
    )
    assert selected == []
    selected = await cluster.get(ResourceSelector(namespace="other"))
    assert [r.kind for r in selected] == ["Namespace"]


async def test_delete() -> None:
    """Test deleting a resource, and deleting a missing one."""
    cluster = InMemoryCluster()
    await cluster.apply(deployment())
    await cluster.delete(WEB)
    await cluster.delete(WEB)
    assert WEB not in cluster
    assert cluster.deleted == [WEB]
    assert await cluster.get_resource(WEB) is None


async def test_missing_name_rejected() -> None:
    """Test a resource without a name is rejected."""
    cluster = InMemoryCluster()
    resource = Resource("v1", "ConfigMap", "", "default", {"metadata": {}})
    with pytest.raises(ValidationRejected, match="metadata.name"):
        await cluster.apply(resource)


async def test_inject_failure() -> None:
    """Test injected failures are raised the requested number of times."""
    cluster = InMemoryCluster()
    cluster.inject_failure(RateLimited("slow down"), WEB, times=2)
    other = Resource.parse_doc(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "x"}}
    )
    await cluster.apply(other)
    for _ in range(2):
        with pytest.raises(RateLimited):
            await cluster.apply(deployment())
    await cluster.apply(deployment())


async def test_unreachable() -> None:
    """Test every call fails while the cluster is unreachable."""
    cluster = InMemoryCluster()
    cluster.unreachable = True
    with pytest.raises(ClusterUnreachable):
        await cluster.get(ResourceSelector())
    with pytest.raises(ClusterUnreachable):
        await cluster.apply(deployment())
    with pytest.raises(ClusterUnreachable):
        await cluster.delete(WEB)
