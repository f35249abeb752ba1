"""Health evaluation of live resources.

Each kind has a rule that inspects the status reported by its controller.
A resource that is below its target (e.g. fewer ready replicas than
desired) is Progressing for a grace period measured from the first time
it was seen below target, and Degraded once the grace period elapsed.
Failures reported by the controller itself (a crash looping pod, a failed
job, an exceeded progress deadline) are Degraded immediately.

The health of an application is the worst health of its resources:

    Degraded > Progressing > Missing > Healthy
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import datetime
from enum import StrEnum
import logging
from typing import Any

from .config import HealthConfig
from .manifest import NamedResource, Resource
from .observer import LiveSnapshot
from .store import Artifact, utcnow

__all__ = [
    "HealthStatus",
    "ResourceHealth",
    "HealthReport",
    "HealthEvaluator",
    "aggregate_health",
]

_LOGGER = logging.getLogger(__name__)


class HealthStatus(StrEnum):
    """Health of a resource or application."""

    HEALTHY = "Healthy"
    MISSING = "Missing"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.MISSING: 1,
    HealthStatus.PROGRESSING: 2,
    HealthStatus.DEGRADED: 3,
}


def aggregate_health(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Return the worst status, or Healthy if there are none."""
    return max(
        statuses, key=lambda status: status.severity, default=HealthStatus.HEALTHY
    )


@dataclass(frozen=True)
class ResourceHealth:
    """Health record of a single resource."""

    resource_id: NamedResource
    status: HealthStatus
    message: str = ""
    timestamp: datetime.datetime = field(default_factory=utcnow)


@dataclass(frozen=True, kw_only=True)
class HealthReport(Artifact):
    """Health of every resource of an application."""

    records: tuple[ResourceHealth, ...] = ()

    stale: bool = False
    """Set when the report was computed from a stale snapshot."""

    @property
    def status(self) -> HealthStatus:
        """Return the aggregate health of the application."""
        return aggregate_health(record.status for record in self.records)

    def unhealthy(self) -> list[ResourceHealth]:
        """Return the records that are not Healthy."""
        return [r for r in self.records if r.status != HealthStatus.HEALTHY]


Rule = Callable[[Resource], tuple[HealthStatus, str]]


def get_condition(
    conditions: list[dict[str, Any]] | None, condition_type: str
) -> dict[str, Any] | None:
    """Get a specific condition from a conditions list."""
    for condition in conditions or ():
        if condition.get("type") == condition_type:
            return condition
    return None


def _generation_observed(resource: Resource) -> bool:
    observed = resource.status.get("observedGeneration")
    generation = resource.body.get("metadata", {}).get("generation")
    return observed is None or generation is None or observed >= generation


def _replicated_health(resource: Resource) -> tuple[HealthStatus, str]:
    status = resource.status
    progressing = get_condition(status.get("conditions"), "Progressing")
    if progressing and progressing.get("reason") == "ProgressDeadlineExceeded":
        message = progressing.get("message") or "Progress deadline exceeded"
        return HealthStatus.DEGRADED, message
    if not _generation_observed(resource):
        return HealthStatus.PROGRESSING, "Waiting for the new generation to be observed"
    desired = resource.spec.get("replicas", 1)
    updated = status.get("updatedReplicas")
    if updated is not None and updated < desired:
        return HealthStatus.PROGRESSING, f"{updated}/{desired} replicas updated"
    ready = status.get("readyReplicas") or 0
    if ready < desired:
        return HealthStatus.PROGRESSING, f"{ready}/{desired} replicas ready"
    return HealthStatus.HEALTHY, f"{ready}/{desired} replicas ready"


def _daemon_set_health(resource: Resource) -> tuple[HealthStatus, str]:
    status = resource.status
    if not _generation_observed(resource):
        return HealthStatus.PROGRESSING, "Waiting for the new generation to be observed"
    desired = status.get("desiredNumberScheduled") or 0
    ready = status.get("numberReady") or 0
    if ready < desired or not status:
        return HealthStatus.PROGRESSING, f"{ready}/{desired} pods ready"
    return HealthStatus.HEALTHY, f"{ready}/{desired} pods ready"


_POD_FAILURES = {
    "CrashLoopBackOff",
    "ImagePullBackOff",
    "ErrImagePull",
    "CreateContainerConfigError",
    "InvalidImageName",
}


def _pod_health(resource: Resource) -> tuple[HealthStatus, str]:
    status = resource.status
    phase = status.get("phase")
    if phase == "Succeeded":
        return HealthStatus.HEALTHY, "Pod completed"
    if phase == "Failed":
        return HealthStatus.DEGRADED, status.get("message") or "Pod failed"
    for container in status.get("containerStatuses") or ():
        waiting = (container.get("state") or {}).get("waiting") or {}
        if (reason := waiting.get("reason")) in _POD_FAILURES:
            return HealthStatus.DEGRADED, f"Container {container.get('name')}: {reason}"
    ready = get_condition(status.get("conditions"), "Ready")
    if phase == "Running" and ready and ready.get("status") == "True":
        return HealthStatus.HEALTHY, "Pod is ready"
    return HealthStatus.PROGRESSING, f"Pod is {phase or 'Pending'}"


def _job_health(resource: Resource) -> tuple[HealthStatus, str]:
    conditions = resource.status.get("conditions")
    failed = get_condition(conditions, "Failed")
    if failed and failed.get("status") == "True":
        return HealthStatus.DEGRADED, failed.get("message") or "Job failed"
    complete = get_condition(conditions, "Complete")
    if complete and complete.get("status") == "True":
        return HealthStatus.HEALTHY, "Job completed"
    return HealthStatus.PROGRESSING, "Job is running"


def _pvc_health(resource: Resource) -> tuple[HealthStatus, str]:
    phase = resource.status.get("phase")
    if phase == "Bound":
        return HealthStatus.HEALTHY, "Claim is bound"
    if phase == "Lost":
        return HealthStatus.DEGRADED, "Claim lost its volume"
    return HealthStatus.PROGRESSING, f"Claim is {phase or 'Pending'}"


def _service_health(resource: Resource) -> tuple[HealthStatus, str]:
    if resource.spec.get("type") != "LoadBalancer":
        return HealthStatus.HEALTHY, ""
    if (resource.status.get("loadBalancer") or {}).get("ingress"):
        return HealthStatus.HEALTHY, "Load balancer assigned"
    return HealthStatus.PROGRESSING, "Waiting for load balancer"


RULES: dict[str, Rule] = {
    "Deployment": _replicated_health,
    "StatefulSet": _replicated_health,
    "ReplicaSet": _replicated_health,
    "DaemonSet": _daemon_set_health,
    "Pod": _pod_health,
    "Job": _job_health,
    "PersistentVolumeClaim": _pvc_health,
    "Service": _service_health,
}


def resource_health(resource: Resource) -> tuple[HealthStatus, str]:
    """Evaluate a resource with its kind rule, ignoring any grace period."""
    if (rule := RULES.get(resource.kind)) is None:
        return HealthStatus.HEALTHY, ""
    return rule(resource)


class HealthEvaluator:
    """Evaluates the health of live snapshots.

    The evaluator remembers when each resource was first seen below target
    in order to apply the grace period across evaluations.
    """

    def __init__(self, config: HealthConfig | None = None) -> None:
        self._config = config or HealthConfig()
        self._first_unhealthy: dict[
            tuple[NamedResource, NamedResource], datetime.datetime
        ] = {}

    def _apply_grace(
        self,
        key: tuple[NamedResource, NamedResource],
        status: HealthStatus,
        message: str,
        now: datetime.datetime,
    ) -> tuple[HealthStatus, str]:
        if status != HealthStatus.PROGRESSING:
            self._first_unhealthy.pop(key, None)
            return status, message
        since = self._first_unhealthy.setdefault(key, now)
        grace = datetime.timedelta(seconds=self._config.grace_period)
        if now - since >= grace:
            return (
                HealthStatus.DEGRADED,
                f"{message} (below target for more than"
                f" {self._config.grace_period:g}s)",
            )
        return status, message

    def evaluate(
        self,
        app_id: NamedResource,
        snapshot: LiveSnapshot,
        expected: Iterable[NamedResource] = (),
        now: datetime.datetime | None = None,
    ) -> HealthReport:
        """Produce a health report for the resources of an application.

        Args:
            app_id: The application the snapshot belongs to
            snapshot: The live resources
            expected: Resources that should exist, those absent from the
                snapshot are reported as Missing
            now: The evaluation time, defaults to the current time
        """
        now = now or utcnow()
        records: list[ResourceHealth] = []
        seen: set[tuple[NamedResource, NamedResource]] = set()
        for resource in snapshot.resources:
            key = (app_id, resource.resource_id)
            seen.add(key)
            status, message = resource_health(resource)
            status, message = self._apply_grace(key, status, message, now)
            records.append(ResourceHealth(resource.resource_id, status, message, now))
        live_ids = {resource.resource_id for resource in snapshot.resources}
        for resource_id in expected:
            if resource_id not in live_ids:
                records.append(
                    ResourceHealth(
                        resource_id,
                        HealthStatus.MISSING,
                        "Resource does not exist",
                        now,
                    )
                )
        for key in list(self._first_unhealthy):
            if key[0] == app_id and key not in seen:
                del self._first_unhealthy[key]
        report = HealthReport(records=tuple(records), stale=snapshot.stale)
        _LOGGER.debug("Health of %s is %s", app_id, report.status)
        return report

    def forget(self, app_id: NamedResource) -> None:
        """Drop the grace period tracking of an application."""
        for key in list(self._first_unhealthy):
            if key[0] == app_id:
                del self._first_unhealthy[key]
