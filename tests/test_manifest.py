"""Tests for manifest library."""

import pytest
import yaml

from syncloop.exceptions import InputException, ManifestParseError
from syncloop.manifest import (
    Application,
    NamedResource,
    Resource,
    SyncPolicy,
    TRACKING_LABEL,
    parse_manifests,
)

APPLICATION = """\
apiVersion: argoproj.io/v1alpha1
kind: Application
metadata:
  name: guestbook
  namespace: argocd
spec:
  project: demo
  source:
    repoURL: https://github.com/example/deploy.git
    path: guestbook
    targetRevision: main
  destination:
    server: https://kubernetes.default.svc
    namespace: guestbook
  syncPolicy:
    automated:
      prune: true
      selfHeal: true
  ignoreDifferences:
  - kind: Deployment
    jsonPointers:
    - /spec/replicas
"""

MANIFESTS = """\
apiVersion: v1
kind: Namespace
metadata:
  name: guestbook
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
data:
  color: blue
---
---
apiVersion: v1
kind: List
items:
- apiVersion: v1
  kind: Service
  metadata:
    name: frontend
    namespace: web
"""


def test_parse_application() -> None:
    """Test parsing an Application object."""
    app = Application.parse_doc(yaml.safe_load(APPLICATION))
    assert app.name == "guestbook"
    assert app.namespace == "argocd"
    assert app.project == "demo"
    assert app.source.repo_url == "https://github.com/example/deploy.git"
    assert app.source.path == "guestbook"
    assert app.source.target_revision == "main"
    assert app.destination.namespace == "guestbook"
    assert app.sync_policy == SyncPolicy(automated=True, prune=True, self_heal=True)
    assert len(app.ignore_differences) == 1
    assert app.ignore_differences[0].json_pointers == ["/spec/replicas"]
    assert app.resource_id == NamedResource("Application", "argocd", "guestbook")
    assert app.tracking_labels == {TRACKING_LABEL: "guestbook"}


def test_application_defaults() -> None:
    """Test the defaults of a minimal Application."""
    app = Application.parse_doc(
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "Application",
            "metadata": {"name": "minimal"},
            "spec": {"source": {"repoURL": "/srv/repo"}},
        }
    )
    assert app.namespace == "default"
    assert app.source.path == "."
    assert app.source.target_revision == "HEAD"
    assert app.destination.server == "https://kubernetes.default.svc"
    assert app.destination.namespace == "default"
    assert app.sync_policy == SyncPolicy()


def test_application_serialization() -> None:
    """Test the dict representation uses the Application field names."""
    app = Application.parse_doc(yaml.safe_load(APPLICATION))
    data = app.to_dict()
    assert data["source"]["repoURL"] == "https://github.com/example/deploy.git"
    assert data["source"]["targetRevision"] == "main"
    assert data["syncPolicy"] == {"automated": True, "prune": True, "selfHeal": True}
    assert data["name"] == "guestbook"
    assert data["namespace"] == "argocd"


@pytest.mark.parametrize(
    ("doc", "match"),
    [
        ({"kind": "Application"}, "missing apiVersion"),
        ({"apiVersion": "v1", "kind": "Application"}, "expected 'argoproj.io'"),
        (
            {"apiVersion": "argoproj.io/v1alpha1", "kind": "Application"},
            "missing metadata",
        ),
        (
            {
                "apiVersion": "argoproj.io/v1alpha1",
                "kind": "Application",
                "metadata": {"name": "a"},
                "spec": {"destination": {}},
            },
            "missing spec.source",
        ),
    ],
)
def test_invalid_application(doc: dict, match: str) -> None:
    """Test invalid Application objects."""
    with pytest.raises(InputException, match=match):
        Application.parse_doc(doc)


@pytest.mark.parametrize(
    ("policy", "expected"),
    [
        (None, SyncPolicy()),
        ({}, SyncPolicy()),
        ({"automated": {}}, SyncPolicy(automated=True)),
        ({"automated": {"prune": True}}, SyncPolicy(automated=True, prune=True)),
        ({"automated": True, "selfHeal": True}, SyncPolicy(True, False, True)),
        ({"automated": False, "prune": True}, SyncPolicy(prune=True)),
    ],
)
def test_sync_policy(policy: dict | None, expected: SyncPolicy) -> None:
    """Test parsing the sync policy."""
    assert SyncPolicy.parse_doc(policy) == expected


def test_parse_manifests() -> None:
    """Test parsing a stream of manifests."""
    resources = parse_manifests(MANIFESTS, default_namespace="guestbook")
    assert [r.resource_id for r in resources] == [
        NamedResource("Namespace", None, "guestbook"),
        NamedResource("ConfigMap", "guestbook", "settings"),
        NamedResource("Service", "web", "frontend"),
    ]
    configmap = resources[1]
    assert configmap.body["metadata"]["namespace"] == "guestbook"
    assert configmap.body["data"] == {"color": "blue"}


def test_parse_manifests_bytes() -> None:
    """Test parsing manifests read from a file."""
    resources = parse_manifests(MANIFESTS.encode())
    assert resources[1].namespace is None


def test_parse_manifests_duplicate() -> None:
    """Test a resource declared twice is rejected."""
    content = "\n---\n".join([MANIFESTS.split("---")[1]] * 2)
    with pytest.raises(ManifestParseError, match="more than once"):
        parse_manifests(content)


def test_parse_manifests_invalid_yaml() -> None:
    """Test malformed YAML is rejected."""
    with pytest.raises(ManifestParseError, match="Invalid YAML"):
        parse_manifests("kind: [")


def test_parse_manifests_missing_name() -> None:
    """Test an object without a name is rejected."""
    with pytest.raises(ManifestParseError, match="metadata.name"):
        parse_manifests("apiVersion: v1\nkind: ConfigMap\nmetadata: {}\n")


def test_resource_with_labels() -> None:
    """Test deriving a labeled copy leaves the original unchanged."""
    resource = Resource.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "settings", "labels": {"tier": "web"}},
        },
        "default",
    )
    labeled = resource.with_labels({TRACKING_LABEL: "guestbook"})
    assert labeled.labels == {"tier": "web", TRACKING_LABEL: "guestbook"}
    assert resource.labels == {"tier": "web"}
    assert labeled == resource
    assert str(resource.resource_id) == "ConfigMap/default/settings"
