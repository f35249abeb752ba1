"""An in-memory cluster.

The cluster keeps objects the way an API server would: it populates server
side fields (uid, resourceVersion, generation, creationTimestamp) and keeps
the status subresource across applies. Failures can be injected to exercise
error handling, and workloads can be made to report ready immediately.
"""

import copy
from dataclasses import dataclass
import datetime
import logging
import uuid
from typing import Any

from syncloop.exceptions import ClusterException, ClusterUnreachable, ValidationRejected
from syncloop.manifest import NamedResource, Resource

from .client import ClusterClient, ResourceSelector

_LOGGER = logging.getLogger(__name__)

REPLICATED_KINDS = {"Deployment", "StatefulSet", "ReplicaSet"}


@dataclass
class _Fault:
    resource_id: NamedResource | None
    error: ClusterException
    remaining: int


class InMemoryCluster(ClusterClient):
    """ClusterClient backed by a dictionary."""

    def __init__(self, auto_ready: bool = False) -> None:
        """Initialize the cluster.

        Args:
            auto_ready: When set, replicated workloads report all replicas
                ready as soon as they are applied.
        """
        self._objects: dict[NamedResource, dict[str, Any]] = {}
        self._faults: list[_Fault] = []
        self._resource_version = 0
        self.auto_ready = auto_ready
        self.unreachable = False
        self.applied: list[NamedResource] = []
        self.deleted: list[NamedResource] = []

    def inject_failure(
        self,
        error: ClusterException,
        resource_id: NamedResource | None = None,
        times: int = 1,
    ) -> None:
        """Fail the next `times` writes of a resource (or of any resource)."""
        self._faults.append(_Fault(resource_id, error, times))

    def set_status(self, resource_id: NamedResource, status: dict[str, Any]) -> None:
        """Replace the status subresource of a live object."""
        if (obj := self._objects.get(resource_id)) is None:
            raise KeyError(f"Resource {resource_id} does not exist")
        obj["status"] = copy.deepcopy(status)
        self._bump(obj)

    def _bump(self, obj: dict[str, Any]) -> None:
        self._resource_version += 1
        obj["metadata"]["resourceVersion"] = str(self._resource_version)

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise ClusterUnreachable("Unable to connect to the server")

    def _check_faults(self, resource_id: NamedResource) -> None:
        for fault in list(self._faults):
            if fault.resource_id is not None and fault.resource_id != resource_id:
                continue
            fault.remaining -= 1
            if fault.remaining <= 0:
                self._faults.remove(fault)
            raise fault.error

    async def get(self, selector: ResourceSelector) -> list[Resource]:
        """Return the live resources matching the selector."""
        self._check_reachable()
        resources = [
            Resource.parse_doc(copy.deepcopy(obj))
            for _, obj in sorted(self._objects.items())
        ]
        return [resource for resource in resources if selector.matches(resource)]

    async def get_resource(self, resource_id: NamedResource) -> Resource | None:
        """Return a single live resource or None if it does not exist."""
        self._check_reachable()
        if (obj := self._objects.get(resource_id)) is None:
            return None
        return Resource.parse_doc(copy.deepcopy(obj))

    async def apply(self, resource: Resource) -> Resource:
        """Create or update a resource, returning the live object."""
        self._check_reachable()
        resource_id = resource.resource_id
        self._check_faults(resource_id)
        if not resource.body.get("metadata", {}).get("name"):
            raise ValidationRejected(
                f"{resource_id} is invalid: metadata.name: Required"
            )

        body = resource.copy_body()
        body.pop("status", None)
        metadata = body.setdefault("metadata", {})
        if (existing := self._objects.get(resource_id)) is not None:
            existing_metadata = existing["metadata"]
            generation = existing_metadata.get("generation", 1)
            if existing.get("spec") != body.get("spec"):
                generation += 1
            metadata["uid"] = existing_metadata["uid"]
            metadata["creationTimestamp"] = existing_metadata["creationTimestamp"]
            metadata["generation"] = generation
            if "status" in existing:
                body["status"] = existing["status"]
        else:
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = (
                datetime.datetime.now(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
            )
            metadata["generation"] = 1
        if self.auto_ready and resource.kind in REPLICATED_KINDS:
            replicas = (body.get("spec") or {}).get("replicas", 1)
            body["status"] = {
                "observedGeneration": metadata["generation"],
                "replicas": replicas,
                "readyReplicas": replicas,
                "updatedReplicas": replicas,
                "availableReplicas": replicas,
            }
        self._bump(body)
        self._objects[resource_id] = body
        self.applied.append(resource_id)
        _LOGGER.debug("Applied %s", resource_id)
        return Resource.parse_doc(copy.deepcopy(body))

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete a resource. Deleting a missing resource is not an error."""
        self._check_reachable()
        self._check_faults(resource_id)
        if self._objects.pop(resource_id, None) is not None:
            self.deleted.append(resource_id)
            _LOGGER.debug("Deleted %s", resource_id)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._objects
