"""Tests for the kubectl cluster client."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from syncloop.cluster import (
    KubectlClusterClient,
    ResourceSelector,
    classify_error,
    kubectl_provider,
)
from syncloop.exceptions import (
    ClusterException,
    ClusterUnreachable,
    CommandException,
    RateLimited,
    Unauthorized,
    ValidationRejected,
)
from syncloop.manifest import ApplicationDestination, NamedResource, Resource

CONFIGMAP = {
    "apiVersion": "v1",
    "kind": "ConfigMap",
    "metadata": {
        "name": "settings",
        "namespace": "guestbook",
        "labels": {"app.kubernetes.io/instance": "guestbook"},
    },
    "data": {"color": "blue"},
}


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        (
            'Error from server (Forbidden): configmaps is forbidden: User "x"',
            Unauthorized,
        ),
        ("error: You must be logged in to the server (Unauthorized)", Unauthorized),
        ("Error from server (TooManyRequests): please try again", RateLimited),
        (
            "Unable to connect to the server: dial tcp 10.0.0.1:443: connect: "
            "connection refused",
            ClusterUnreachable,
        ),
        ("Command 'kubectl get' timed out", ClusterUnreachable),
        (
            'The Deployment "web" is invalid: spec.replicas: Invalid value: -1',
            ValidationRejected,
        ),
        (
            'error: resource mapping not found: no matches for kind "Widget"',
            ValidationRejected,
        ),
        ("something unexpected", ClusterException),
    ],
)
def test_classify_error(message: str, expected: type[ClusterException]) -> None:
    """Test kubectl errors are mapped to cluster exceptions."""
    err = classify_error(message)
    assert type(err) is expected
    assert str(err) == message


async def test_get() -> None:
    """Test listing resources by label across namespaces."""
    client = KubectlClusterClient(context="prod", kubeconfig="/tmp/kubeconfig")
    out = json.dumps({"kind": "List", "items": [CONFIGMAP]})
    with patch("syncloop.command.run", new_callable=AsyncMock) as run:
        run.return_value = out
        resources = await client.get(
            ResourceSelector(
                kinds=("ConfigMap", "Deployment"),
                labels={"app.kubernetes.io/instance": "guestbook"},
            )
        )
    assert [str(r.resource_id) for r in resources] == [
        "ConfigMap/guestbook/settings"
    ]
    cmd = run.call_args.args[0]
    assert cmd.cmd == [
        "kubectl",
        "--kubeconfig",
        "/tmp/kubeconfig",
        "--context",
        "prod",
        "get",
        "ConfigMap,Deployment",
        "-o",
        "json",
        "-l",
        "app.kubernetes.io/instance=guestbook",
        "--all-namespaces",
    ]


async def test_get_resource() -> None:
    """Test reading a single resource."""
    client = KubectlClusterClient()
    rid = NamedResource("ConfigMap", "guestbook", "settings")
    with patch("syncloop.command.run", new_callable=AsyncMock) as run:
        run.return_value = json.dumps(CONFIGMAP)
        resource = await client.get_resource(rid)
        assert resource is not None
        assert resource.resource_id == rid
        assert run.call_args.args[0].cmd == [
            "kubectl",
            "get",
            "ConfigMap",
            "settings",
            "-o",
            "json",
            "--ignore-not-found",
            "-n",
            "guestbook",
        ]

        run.return_value = ""
        assert await client.get_resource(rid) is None


async def test_apply() -> None:
    """Test applying a resource sends it on stdin."""
    client = KubectlClusterClient()
    resource = Resource.parse_doc(CONFIGMAP)
    with patch("syncloop.command.run", new_callable=AsyncMock) as run:
        run.return_value = json.dumps(CONFIGMAP)
        live = await client.apply(resource)
    assert live.resource_id == resource.resource_id
    cmd, stdin = run.call_args.args
    assert cmd.cmd == ["kubectl", "apply", "-f", "-", "-o", "json"]
    assert yaml.safe_load(stdin) == CONFIGMAP


async def test_delete() -> None:
    """Test deleting a resource."""
    client = KubectlClusterClient()
    with patch("syncloop.command.run", new_callable=AsyncMock) as run:
        run.return_value = ""
        await client.delete(NamedResource("Namespace", None, "guestbook"))
    assert run.call_args.args[0].cmd == [
        "kubectl",
        "delete",
        "Namespace",
        "guestbook",
        "--ignore-not-found",
        "--wait=false",
    ]


async def test_command_failure_is_classified() -> None:
    """Test a failed kubectl invocation raises a cluster exception."""
    client = KubectlClusterClient()
    with patch("syncloop.command.run", new_callable=AsyncMock) as run:
        run.side_effect = CommandException(
            "Command 'kubectl apply' failed with return code 1\n"
            'The ConfigMap "settings" is invalid: data: Invalid value'
        )
        with pytest.raises(ValidationRejected):
            await client.apply(Resource.parse_doc(CONFIGMAP))


async def test_invalid_output() -> None:
    """Test output that is not JSON."""
    client = KubectlClusterClient()
    with patch("syncloop.command.run", new_callable=AsyncMock) as run:
        run.return_value = "not json"
        with pytest.raises(ClusterException, match="Unable to parse"):
            await client.get(ResourceSelector())


def test_provider() -> None:
    """Test the provider maps destination servers to contexts."""
    provider = kubectl_provider(
        contexts={"https://prod.example.com": "prod"}, default_context="dev"
    )
    prod = provider(ApplicationDestination(server="https://prod.example.com"))
    assert prod is provider(ApplicationDestination(server="https://prod.example.com"))
    assert isinstance(prod, KubectlClusterClient)
    assert prod._context == "prod"
    other = provider(ApplicationDestination())
    assert isinstance(other, KubectlClusterClient)
    assert other._context == "dev"
