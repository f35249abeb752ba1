"""Apply executor.

The executor is the only component that writes to the cluster. Deltas are
applied one at a time: creates and updates in kind priority order so that
namespaces, definitions and configuration exist before the workloads that
use them, followed by deletes in the reverse order.

Transient errors are retried with exponential backoff. Any other error, or
running out of attempts, aborts the operation with `PartialApplyFailure`.
Resources applied before the failure are left as they are; there is no
rollback.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from functools import partial
import logging
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .cluster import ClusterClient
from .config import ExecutorConfig
from .context import current_trace, trace_context
from .exceptions import ClusterException, PartialApplyFailure
from .health import HealthStatus, resource_health
from .manifest import NamedResource, Resource
from .operation import ResourceResult
from .resource_diff import DeltaAction, ResourceDelta

__all__ = ["ApplyExecutor", "ApplyOutcome", "order_deltas"]

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

KIND_PRIORITY = [
    "Namespace",
    "CustomResourceDefinition",
    "NetworkPolicy",
    "ResourceQuota",
    "LimitRange",
    "PodDisruptionBudget",
    "ServiceAccount",
    "Secret",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "ClusterRole",
    "ClusterRoleBinding",
    "Role",
    "RoleBinding",
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicaSet",
    "Deployment",
    "HorizontalPodAutoscaler",
    "StatefulSet",
    "Job",
    "CronJob",
    "IngressClass",
    "Ingress",
    "APIService",
    "MutatingWebhookConfiguration",
    "ValidatingWebhookConfiguration",
]
_PRIORITY = {kind: index for index, kind in enumerate(KIND_PRIORITY)}


def _is_transient(err: BaseException) -> bool:
    return isinstance(err, ClusterException) and err.transient


def _priority(delta: ResourceDelta) -> int:
    return _PRIORITY.get(delta.resource_id.kind, len(KIND_PRIORITY))


def order_deltas(deltas: Iterable[ResourceDelta]) -> list[ResourceDelta]:
    """Return the actionable deltas in the order they are applied.

    The sort is stable so resources of the same kind keep manifest order.
    """
    writes = [
        d for d in deltas if d.action in (DeltaAction.CREATE, DeltaAction.UPDATE)
    ]
    deletes = [d for d in deltas if d.action == DeltaAction.DELETE]
    return sorted(writes, key=_priority) + sorted(
        deletes, key=_priority, reverse=True
    )


@dataclass
class ApplyOutcome:
    """Results of a completed apply."""

    results: list[ResourceResult] = field(default_factory=list)

    @property
    def progressing(self) -> list[NamedResource]:
        """Return the resources that did not converge in time."""
        return [
            result.resource_id
            for result in self.results
            if result.health == HealthStatus.PROGRESSING
        ]


class ApplyExecutor:
    """Applies deltas to a cluster."""

    def __init__(
        self, client: ClusterClient, config: ExecutorConfig | None = None
    ) -> None:
        self._client = client
        self._config = config or ExecutorConfig()

    async def apply_all(
        self,
        deltas: Iterable[ResourceDelta],
        labels: dict[str, str] | None = None,
    ) -> ApplyOutcome:
        """Apply the deltas, stopping at the first failure.

        Args:
            deltas: The deltas from the diff, in any order
            labels: Labels added to every created or updated resource

        Raises:
            PartialApplyFailure: With the results of every resource
                attempted so far
        """
        results: list[ResourceResult] = []
        with trace_context("Apply"):
            for delta in order_deltas(deltas):
                result = ResourceResult(delta.resource_id, delta.action)
                results.append(result)
                try:
                    await self._apply_one(delta, result, labels or {})
                except ClusterException as err:
                    result.error = str(err)
                    _LOGGER.error(
                        "%s of %s failed after %d attempt(s): %s",
                        delta.action,
                        delta.resource_id,
                        result.attempts,
                        err,
                    )
                    raise PartialApplyFailure(
                        str(delta.resource_id), err, results
                    ) from err
        return ApplyOutcome(results)

    async def _apply_one(
        self,
        delta: ResourceDelta,
        result: ResourceResult,
        labels: dict[str, str],
    ) -> None:
        resource_id = delta.resource_id
        _LOGGER.debug("[%s] %s %s", current_trace(), delta.action, resource_id)
        if delta.action == DeltaAction.DELETE:
            await self._with_retries(
                lambda: self._client.delete(resource_id), resource_id, result
            )
            return
        if delta.desired is None:
            raise ValueError(f"Delta {delta.action} of {resource_id} has no resource")
        resource = delta.desired.with_labels(labels) if labels else delta.desired
        live = await self._with_retries(
            lambda: self._client.apply(resource), resource_id, result
        )
        result.health = await self._wait_converged(live)

    def _log_retry(self, resource_id: NamedResource, state: RetryCallState) -> None:
        err = state.outcome.exception() if state.outcome else None
        _LOGGER.warning(
            "Transient error for %s (attempt %d/%d), retrying in %.1fs: %s",
            resource_id,
            state.attempt_number,
            self._config.max_attempts,
            state.next_action.sleep if state.next_action else 0,
            err,
        )

    async def _with_retries(
        self,
        func: Callable[[], Awaitable[T]],
        resource_id: NamedResource,
        result: ResourceResult,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(
                multiplier=self._config.initial_backoff,
                exp_base=self._config.backoff_factor,
                max=self._config.max_backoff,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=partial(self._log_retry, resource_id),
            reraise=True,
        )

        async def attempt() -> T:
            result.attempts += 1
            return await func()

        return await retrying(attempt)

    async def _wait_converged(self, live: Resource) -> HealthStatus:
        """Wait a bounded time for the resource to become healthy."""
        status, _ = resource_health(live)
        if status != HealthStatus.PROGRESSING or self._config.convergence_timeout <= 0:
            return status
        try:
            async with asyncio.timeout(self._config.convergence_timeout):
                while status == HealthStatus.PROGRESSING:
                    await asyncio.sleep(self._config.convergence_poll_interval)
                    try:
                        current = await self._client.get_resource(live.resource_id)
                    except ClusterException as err:
                        _LOGGER.debug("Unable to check %s: %s", live.resource_id, err)
                        continue
                    if current is None:
                        continue
                    status, _ = resource_health(current)
        except TimeoutError:
            _LOGGER.info(
                "%s did not converge within %ss",
                live.resource_id,
                self._config.convergence_timeout,
            )
            return HealthStatus.PROGRESSING
        return status
