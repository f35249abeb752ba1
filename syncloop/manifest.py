"""Representation of applications and the kubernetes resources they manage.

An `Application` binds a version controlled source of manifests to a
destination cluster and namespace. The manifests themselves are parsed into
immutable `Resource` objects identified by a `NamedResource`.
"""

import copy
from dataclasses import dataclass, field
import logging
from typing import Any, ClassVar

import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException, ManifestParseError

__all__ = [
    "NamedResource",
    "Resource",
    "Application",
    "ApplicationSource",
    "ApplicationDestination",
    "SyncPolicy",
    "IgnoreDifference",
    "parse_manifests",
]

_LOGGER = logging.getLogger(__name__)


APPLICATION_DOMAIN = "argoproj.io"
APPLICATION_KIND = "Application"
DEFAULT_NAMESPACE = "default"
DEFAULT_SERVER = "https://kubernetes.default.svc"
DEFAULT_REVISION = "HEAD"
DEFAULT_PROJECT = "default"

# Label used to find the live resources managed by an application
TRACKING_LABEL = "app.kubernetes.io/instance"

# Kinds that never carry a namespace
CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "CustomResourceDefinition",
        "ClusterRole",
        "ClusterRoleBinding",
        "PersistentVolume",
        "StorageClass",
        "PriorityClass",
        "IngressClass",
        "APIService",
        "MutatingWebhookConfiguration",
        "ValidatingWebhookConfiguration",
    }
)


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all serializable objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass(frozen=True)
class Resource:
    """An immutable kubernetes object.

    The `body` holds the complete document and must not be modified; use
    `with_labels` or `copy_body` to derive new objects.
    """

    api_version: str
    kind: str
    name: str
    namespace: str | None
    body: dict[str, Any] = field(compare=False, repr=False)

    @classmethod
    def parse_doc(
        cls, doc: dict[str, Any], default_namespace: str | None = None
    ) -> "Resource":
        """Parse a Resource from a raw kubernetes object."""
        if not isinstance(doc, dict):
            raise ManifestParseError(f"Invalid object is not a mapping: {doc!r}")
        if not (api_version := doc.get("apiVersion")):
            raise ManifestParseError(f"Invalid object missing apiVersion: {doc}")
        if not (kind := doc.get("kind")):
            raise ManifestParseError(f"Invalid object missing kind: {doc}")
        if not isinstance(metadata := doc.get("metadata"), dict):
            raise ManifestParseError(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise ManifestParseError(f"Invalid object missing metadata.name: {doc}")
        body = copy.deepcopy(doc)
        namespace: str | None = None
        if kind not in CLUSTER_SCOPED_KINDS:
            namespace = metadata.get("namespace") or default_namespace
            if namespace:
                body["metadata"]["namespace"] = namespace
        return cls(
            api_version=api_version,
            kind=kind,
            name=name,
            namespace=namespace,
            body=body,
        )

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(self.kind, self.namespace, self.name)

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.body.get("metadata", {}).get("labels") or {})

    @property
    def spec(self) -> dict[str, Any]:
        return self.body.get("spec") or {}

    @property
    def status(self) -> dict[str, Any]:
        return self.body.get("status") or {}

    def copy_body(self) -> dict[str, Any]:
        """Return a deep copy of the document that may be freely modified."""
        return copy.deepcopy(self.body)

    def with_labels(self, labels: dict[str, str]) -> "Resource":
        """Return a copy of the resource with the additional labels set."""
        body = self.copy_body()
        metadata = body.setdefault("metadata", {})
        metadata["labels"] = {**(metadata.get("labels") or {}), **labels}
        return Resource(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
            body=body,
        )

    def yaml(self) -> str:
        """Return the document as a YAML string."""
        return yaml.dump(self.body, sort_keys=False, explicit_start=True)


def parse_manifests(
    content: str | bytes, default_namespace: str | None = None
) -> list[Resource]:
    """Parse a stream of YAML documents into resources.

    Documents of kind `List` are expanded into their items. Empty documents
    are skipped. A resource that appears more than once is an error.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise ManifestParseError(f"Invalid YAML in manifests: {err}") from err

    resources: list[Resource] = []
    seen: set[NamedResource] = set()
    for doc in docs:
        if not doc:
            continue
        if isinstance(doc, dict) and doc.get("kind") == "List":
            items = doc.get("items") or []
        else:
            items = [doc]
        for item in items:
            resource = Resource.parse_doc(item, default_namespace)
            if resource.resource_id in seen:
                raise ManifestParseError(
                    f"Resource {resource.resource_id} appeared more than once"
                )
            seen.add(resource.resource_id)
            resources.append(resource)
    _LOGGER.debug("Parsed %d resources", len(resources))
    return resources


@dataclass
class ApplicationSource(BaseManifest):
    """The version controlled location of the desired manifests."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    """URL of the repository (or a local directory)."""

    path: str = "."
    """Directory inside the repository holding the manifests."""

    target_revision: str = field(
        metadata=field_options(alias="targetRevision"), default=DEFAULT_REVISION
    )
    """Branch, tag or commit to track."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ApplicationSource":
        """Parse an ApplicationSource from the application spec.source."""
        if not (repo_url := doc.get("repoURL")):
            raise InputException(f"Invalid source missing repoURL: {doc}")
        return cls(
            repo_url=repo_url,
            path=doc.get("path") or ".",
            target_revision=str(doc.get("targetRevision") or DEFAULT_REVISION),
        )


@dataclass
class ApplicationDestination(BaseManifest):
    """The cluster and namespace the manifests are applied to."""

    namespace: str = DEFAULT_NAMESPACE
    """Namespace for resources that don't declare one."""

    server: str = DEFAULT_SERVER
    """URL of the target cluster API server."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ApplicationDestination":
        """Parse an ApplicationDestination from the application spec.destination."""
        return cls(
            namespace=doc.get("namespace") or DEFAULT_NAMESPACE,
            server=doc.get("server") or DEFAULT_SERVER,
        )


@dataclass
class SyncPolicy(BaseManifest):
    """Controls when and how an application is synced."""

    automated: bool = False
    """Sync automatically when the source revision changes."""

    prune: bool = False
    """Delete live resources that are no longer in the source."""

    self_heal: bool = field(metadata=field_options(alias="selfHeal"), default=False)
    """Sync automatically when the live state drifts."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any] | None) -> "SyncPolicy":
        """Parse a SyncPolicy from the application spec.syncPolicy.

        The prune and self heal flags live under `automated` as in an ArgoCD
        Application, but are also accepted at the top level.
        """
        doc = doc or {}
        automated = doc.get("automated")
        flags = automated if isinstance(automated, dict) else doc
        return cls(
            automated=automated is not None and automated is not False,
            prune=bool(flags.get("prune", False)),
            self_heal=bool(flags.get("selfHeal", False)),
        )


@dataclass
class IgnoreDifference(BaseManifest):
    """Fields of matching resources that are excluded from the diff."""

    kind: str
    """The kind of resource the rule applies to."""

    json_pointers: list[str] = field(
        metadata=field_options(alias="jsonPointers"), default_factory=list
    )
    """RFC 6901 pointers of fields to ignore e.g. `/spec/replicas`."""

    name: str | None = None
    """Optional name of the resource the rule applies to."""

    namespace: str | None = None
    """Optional namespace of the resource the rule applies to."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "IgnoreDifference":
        """Parse an IgnoreDifference from an ignoreDifferences entry."""
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid ignoreDifferences missing kind: {doc}")
        return cls(
            kind=kind,
            json_pointers=list(doc.get("jsonPointers") or []),
            name=doc.get("name"),
            namespace=doc.get("namespace"),
        )

    def matches(self, resource_id: NamedResource) -> bool:
        """Return True if the rule applies to the resource."""
        if self.kind != resource_id.kind:
            return False
        if self.name and self.name != resource_id.name:
            return False
        if self.namespace and self.namespace != resource_id.namespace:
            return False
        return True


@dataclass
class Application(BaseManifest):
    """A named binding between a source and a destination."""

    kind: ClassVar[str] = APPLICATION_KIND

    name: str
    """The name of the application."""

    namespace: str
    """The namespace owning the application object."""

    source: ApplicationSource
    """Where the desired manifests come from."""

    destination: ApplicationDestination = field(
        default_factory=ApplicationDestination
    )
    """Where the manifests are applied."""

    sync_policy: SyncPolicy = field(
        metadata=field_options(alias="syncPolicy"), default_factory=SyncPolicy
    )
    """When the application is synced."""

    project: str = DEFAULT_PROJECT
    """Project the application belongs to, for informational purposes."""

    ignore_differences: list[IgnoreDifference] = field(
        metadata=field_options(alias="ignoreDifferences"), default_factory=list
    )
    """Fields excluded when comparing desired and live state."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Application":
        """Parse an Application from an argoproj.io Application object."""
        _check_version(doc, APPLICATION_DOMAIN)
        if doc.get("kind") != APPLICATION_KIND:
            raise InputException(f"Invalid object expected {APPLICATION_KIND}: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls} missing spec: {doc}")
        if not (source := spec.get("source")):
            raise InputException(f"Invalid {cls} missing spec.source: {doc}")
        return cls(
            name=name,
            namespace=metadata.get("namespace") or DEFAULT_NAMESPACE,
            project=spec.get("project") or DEFAULT_PROJECT,
            source=ApplicationSource.parse_doc(source),
            destination=ApplicationDestination.parse_doc(spec.get("destination") or {}),
            sync_policy=SyncPolicy.parse_doc(spec.get("syncPolicy")),
            ignore_differences=[
                IgnoreDifference.parse_doc(item)
                for item in spec.get("ignoreDifferences") or ()
            ],
        )

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(APPLICATION_KIND, self.namespace, self.name)

    @property
    def tracking_labels(self) -> dict[str, str]:
        """Labels stamped on every resource managed by this application."""
        return {TRACKING_LABEL: self.name}
