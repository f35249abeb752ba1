"""Module for computing the difference between desired and live resources.

The comparison is a pure function of its inputs. Both sides are normalized
first so that fields populated by the cluster (status, uid, resource
version and so on) never count as drift. The tracking label is
owned by the engine and is ignored as well. Live objects usually carry
defaulted fields the manifests don't mention; only fields present in the
desired resource are compared, plus fields that were removed from the
desired resource since it was last applied by kubectl.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
import difflib
from enum import StrEnum
import json
import logging
from typing import Any

import yaml

from .exceptions import ManifestParseError
from .manifest import TRACKING_LABEL, IgnoreDifference, NamedResource, Resource
from .store.artifact import Artifact
from .store.status import SyncStatus

__all__ = [
    "DeltaAction",
    "ResourceDelta",
    "ComparisonResult",
    "diff_resources",
    "normalize",
]

_LOGGER = logging.getLogger(__name__)

LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

IGNORED_METADATA = (
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "selfLink",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "ownerReferences",
)

IGNORED_ANNOTATIONS = (
    LAST_APPLIED_ANNOTATION,
    "deployment.kubernetes.io/revision",
)


class DeltaAction(StrEnum):
    """What must happen to a resource to reach the desired state."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    UNCHANGED = "Unchanged"
    PRUNE_SKIPPED = "PruneSkipped"


@dataclass(frozen=True)
class ResourceDelta:
    """The result of comparing one resource."""

    resource_id: NamedResource
    action: DeltaAction
    desired: Resource | None = None
    live: Resource | None = None
    changes: tuple[str, ...] = ()
    """JSON pointers of the diverging fields, for updates."""

    @property
    def actionable(self) -> bool:
        """Return True if the executor has work to do for this delta."""
        return self.action in (
            DeltaAction.CREATE,
            DeltaAction.UPDATE,
            DeltaAction.DELETE,
        )

    def unified_diff(
        self,
        ignore_differences: Iterable[IgnoreDifference] = (),
        n: int = 3,
    ) -> str:
        """Render the change as a unified diff of the normalized YAML documents."""
        rules = list(ignore_differences)
        before = _dump(normalize(self.live, rules)) if self.live else []
        after = _dump(normalize(self.desired, rules)) if self.desired else []
        label = str(self.resource_id)
        return "".join(
            difflib.unified_diff(
                before, after, fromfile=f"live {label}", tofile=f"desired {label}", n=n
            )
        )


def _dump(doc: dict[str, Any]) -> list[str]:
    return yaml.dump(doc, sort_keys=True).splitlines(keepends=True)


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def _remove_pointer(doc: Any, pointer: str) -> None:
    """Remove the field named by an RFC 6901 pointer, if present."""
    tokens = [_unescape(token) for token in pointer.split("/")[1:]]
    if not tokens:
        return
    parent = doc
    for token in tokens[:-1]:
        if isinstance(parent, dict):
            parent = parent.get(token)
        elif isinstance(parent, list) and token.isdigit() and int(token) < len(parent):
            parent = parent[int(token)]
        else:
            return
    last = tokens[-1]
    if isinstance(parent, dict):
        parent.pop(last, None)
    elif isinstance(parent, list) and last.isdigit() and int(last) < len(parent):
        del parent[int(last)]


def normalize(
    resource: Resource, ignore_differences: Iterable[IgnoreDifference] = ()
) -> dict[str, Any]:
    """Return a copy of the resource body without the ignored fields."""
    body = resource.copy_body()
    body.pop("status", None)
    metadata = body.get("metadata") or {}
    for key in IGNORED_METADATA:
        metadata.pop(key, None)
    if labels := metadata.get("labels"):
        labels.pop(TRACKING_LABEL, None)
    if annotations := metadata.get("annotations"):
        for key in IGNORED_ANNOTATIONS:
            annotations.pop(key, None)
    for rule in ignore_differences:
        if not rule.matches(resource.resource_id):
            continue
        for pointer in rule.json_pointers:
            _remove_pointer(body, pointer)
    for key in ("labels", "annotations"):
        if key in metadata and not metadata[key]:
            del metadata[key]
    return body


def _escape(key: str) -> str:
    return str(key).replace("~", "~0").replace("/", "~1")


def _compare(desired: Any, live: Any, path: str, changes: list[str]) -> None:
    """Record the paths where the desired value is not reflected in live."""
    if isinstance(desired, dict) and isinstance(live, dict):
        for key, value in desired.items():
            child = f"{path}/{_escape(key)}"
            if key not in live:
                if value not in (None, {}, []):
                    changes.append(child)
                continue
            _compare(value, live[key], child, changes)
        return
    if isinstance(desired, list) and isinstance(live, list):
        if len(desired) != len(live):
            changes.append(path or "/")
            return
        for index, (d, l) in enumerate(zip(desired, live)):
            _compare(d, l, f"{path}/{index}", changes)
        return
    if desired != live:
        changes.append(path or "/")


def _removed_fields(
    last_applied: Any, desired: Any, live: Any, path: str, changes: list[str]
) -> None:
    """Record fields that were applied previously and are gone from desired."""
    if not (isinstance(last_applied, dict) and isinstance(live, dict)):
        return
    desired = desired if isinstance(desired, dict) else {}
    for key, value in last_applied.items():
        child = f"{path}/{_escape(key)}"
        if key not in live:
            continue
        if key not in desired:
            changes.append(child)
            continue
        _removed_fields(value, desired[key], live[key], child, changes)


def _last_applied(
    live: Resource, ignore_differences: list[IgnoreDifference]
) -> dict[str, Any] | None:
    annotations = live.body.get("metadata", {}).get("annotations") or {}
    if not (content := annotations.get(LAST_APPLIED_ANNOTATION)):
        return None
    try:
        doc = json.loads(content)
    except ValueError:
        _LOGGER.debug("Ignoring malformed last applied configuration of %s", live)
        return None
    if not isinstance(doc, dict) or not doc.get("metadata"):
        return None
    try:
        resource = Resource.parse_doc(doc, live.namespace)
    except ManifestParseError:
        return None
    return normalize(resource, ignore_differences)


def _changes(
    desired: Resource,
    live: Resource,
    ignore_differences: list[IgnoreDifference],
) -> tuple[str, ...]:
    desired_doc = normalize(desired, ignore_differences)
    live_doc = normalize(live, ignore_differences)
    changes: list[str] = []
    _compare(desired_doc, live_doc, "", changes)
    if (last_applied := _last_applied(live, ignore_differences)) is not None:
        _removed_fields(last_applied, desired_doc, live_doc, "", changes)
    return tuple(sorted(set(changes)))


def diff_resources(
    desired: Iterable[Resource],
    live: Iterable[Resource],
    *,
    prune: bool,
    ignore_differences: Iterable[IgnoreDifference] = (),
) -> list[ResourceDelta]:
    """Compare the desired resources with the live resources.

    Deltas for desired resources come first in manifest order, followed by
    resources that only exist live in sorted order. Live-only resources are
    deleted when `prune` is set and reported as `PruneSkipped` otherwise.
    Neither input is modified.
    """
    rules = list(ignore_differences)
    live_by_id = {resource.resource_id: resource for resource in live}
    deltas: list[ResourceDelta] = []
    desired_ids: set[NamedResource] = set()
    for resource in desired:
        resource_id = resource.resource_id
        desired_ids.add(resource_id)
        if (current := live_by_id.get(resource_id)) is None:
            deltas.append(
                ResourceDelta(resource_id, DeltaAction.CREATE, desired=resource)
            )
            continue
        if changes := _changes(resource, current, rules):
            action = DeltaAction.UPDATE
        else:
            action = DeltaAction.UNCHANGED
        deltas.append(
            ResourceDelta(
                resource_id, action, desired=resource, live=current, changes=changes
            )
        )
    for resource_id in sorted(set(live_by_id) - desired_ids):
        action = DeltaAction.DELETE if prune else DeltaAction.PRUNE_SKIPPED
        deltas.append(ResourceDelta(resource_id, action, live=live_by_id[resource_id]))
    _LOGGER.debug(
        "Compared %d desired and %d live resources", len(desired_ids), len(live_by_id)
    )
    return deltas


@dataclass(frozen=True, kw_only=True)
class ComparisonResult(Artifact):
    """The outcome of the latest comparison of an application.

    This object is written to the store after every observation and sync.
    """

    revision: str | None = None
    """The desired revision that was compared, if it could be fetched."""

    deltas: tuple[ResourceDelta, ...] = field(default=())
    """Deltas in the order produced by `diff_resources`."""

    error: str | None = None
    """Why the comparison could not be made, if it failed."""

    @property
    def sync_status(self) -> SyncStatus:
        """Return Synced only when every resource is unchanged."""
        if self.error is not None or self.revision is None:
            return SyncStatus.UNKNOWN
        if all(delta.action == DeltaAction.UNCHANGED for delta in self.deltas):
            return SyncStatus.SYNCED
        return SyncStatus.OUT_OF_SYNC

    @property
    def has_actionable_drift(self) -> bool:
        """Return True if a sync would change the cluster."""
        return any(delta.actionable for delta in self.deltas)

    def counts(self) -> dict[DeltaAction, int]:
        """Return the number of deltas of each action."""
        result: dict[DeltaAction, int] = {}
        for delta in self.deltas:
            result[delta.action] = result.get(delta.action, 0) + 1
        return result

