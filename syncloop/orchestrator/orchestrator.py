"""Orchestrator for syncloop.

This module provides the main orchestrator that wires the components
together and runs the reconciliation of every registered Application.

For each Application two periodic tasks run independently:
- The revision poll fetches the target revision of the source. Automated
  Applications are synced when it differs from the last synced revision.
- The observation reads the live state, evaluates health and compares the
  live state to the desired state. Automated Applications with self heal
  enabled are synced when actionable drift is found.

Syncs are performed by the scheduler, one at a time per Application.
"""

import asyncio
from dataclasses import dataclass, replace
import datetime
from functools import partial
import logging
import re

from syncloop.cluster import ClusterProvider
from syncloop.config import OrchestratorConfig
from syncloop.context import trace_context
from syncloop.exceptions import (
    ApplicationNotFoundError,
    ErrorCause,
    InputException,
    SyncLoopException,
)
from syncloop.executor import ApplyExecutor
from syncloop.health import HealthEvaluator, HealthReport, HealthStatus
from syncloop.manifest import Application, NamedResource, SyncPolicy
from syncloop.notify import (
    EventType,
    LoggingNotificationSink,
    NotificationSink,
    SyncEvent,
)
from syncloop.observer import LiveSnapshot, LiveStateObserver
from syncloop.operation import OperationPhase, SyncOperation, TriggerCause
from syncloop.resource_diff import ComparisonResult, diff_resources
from syncloop.scheduler import SyncScheduler, TriggerResult
from syncloop.source_controller import (
    DesiredManifestSet,
    DesiredStateFetcher,
    SourceBackend,
)
from syncloop.store import Store, StoreEvent, SyncPhase, SyncStatus, utcnow
from syncloop.task import TaskService, get_task_service

__all__ = ["Orchestrator", "ApplicationStatus"]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ApplicationStatus:
    """The user visible state of an Application."""

    application: NamedResource
    phase: SyncPhase
    sync_status: SyncStatus
    health: HealthStatus | None = None
    revision: str | None = None
    """The revision of the last successful sync."""

    target_revision: str | None = None
    """The latest resolved revision of the source."""

    last_operation: SyncOperation | None = None
    error: str | None = None
    error_cause: ErrorCause | None = None
    autosync_suspended: bool = False
    stale: bool = False


def _normalize_url(url: str) -> str:
    url = url.strip().rstrip("/")
    return re.sub(r"\.git$", "", url).lower()


def _ref_matches(target: str, ref: str) -> bool:
    """Return True if a pushed ref is the target revision of a source."""
    ref = re.sub(r"^refs/(heads|tags)/", "", ref)
    return target in ("HEAD", ref) or ref == target.removeprefix("refs/heads/")


class Orchestrator:
    """Orchestrator for coordinating the reconciliation of Applications.

    The orchestrator is responsible for:
    - Managing the lifecycle of the per Application periodic tasks
    - Performing sync operations admitted by the scheduler
    - Suspending automated syncs of degraded Applications
    - Providing a unified interface for triggering syncs and reading status
    """

    def __init__(
        self,
        store: Store,
        cluster_provider: ClusterProvider,
        config: OrchestratorConfig | None = None,
        source_backend: SourceBackend | None = None,
        notifier: NotificationSink | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self.store = store
        self.config = config or OrchestratorConfig()
        self._cluster_provider = cluster_provider
        self._task_service = task_service or get_task_service()
        self._notifier = notifier or LoggingNotificationSink()
        self.fetcher = DesiredStateFetcher(self.config.source, source_backend)
        self.observer = LiveStateObserver(
            store, cluster_provider, self.config.observer
        )
        self.health = HealthEvaluator(self.config.health)
        self.scheduler = SyncScheduler(
            store,
            self._execute,
            self._task_service,
            self.config.scheduler,
            listener=self._on_finished,
        )
        self._tasks: dict[NamedResource, list[asyncio.Task[None]]] = {}
        self._suspended: set[NamedResource] = set()
        self._last_health: dict[NamedResource, HealthStatus] = {}
        self._synced_revision: dict[NamedResource, str] = {}
        self._watcher: asyncio.Task[None] | None = None
        self._remove_listener = store.add_listener(
            StoreEvent.OBJECT_REMOVED, self._on_removed
        )

    async def start(self) -> None:
        """Start the periodic tasks of every current and future Application."""
        if self._watcher is not None:
            return
        _LOGGER.info("Starting orchestrator")
        self._watcher = self._task_service.create_background_task(
            self._watch(), name="watch-applications"
        )

    async def stop(self) -> None:
        """Stop the periodic tasks and wait for running syncs."""
        _LOGGER.info("Stopping orchestrator")
        tasks = [task for tasks in self._tasks.values() for task in tasks]
        if self._watcher is not None:
            tasks.append(self._watcher)
            self._watcher = None
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.scheduler.close()
        _LOGGER.info("Orchestrator stopped")

    async def _watch(self) -> None:
        async for resource_id, _ in self.store.watch_added():
            if resource_id in self._tasks:
                continue
            _LOGGER.debug("Starting periodic tasks for %s", resource_id)
            self._tasks[resource_id] = [
                self._task_service.create_periodic_task(
                    partial(self.poll_revision, resource_id),
                    self.config.resync_interval,
                    name=f"poll-revision-{resource_id}",
                ),
                self._task_service.create_periodic_task(
                    partial(self.observe, resource_id),
                    self.config.observer.poll_interval,
                    name=f"observe-{resource_id}",
                ),
            ]

    def _on_removed(self, resource_id: NamedResource, _: Application) -> None:
        for task in self._tasks.pop(resource_id, []):
            task.cancel()
        self.scheduler.remove(resource_id)
        self.health.forget(resource_id)
        self.observer.forget(resource_id)
        self._suspended.discard(resource_id)
        self._last_health.pop(resource_id, None)
        self._synced_revision.pop(resource_id, None)

    def _get(self, resource_id: NamedResource) -> Application:
        if (app := self.store.get_object(resource_id)) is None:
            raise ApplicationNotFoundError(f"Application {resource_id} not found")
        return app

    def register(self, app: Application) -> NamedResource:
        """Register or replace an Application.

        The name of an Application is the value of its tracking label, so it
        must be unique across namespaces.

        Raises:
            InputException: If another namespace has an Application of the
                same name
        """
        for other in self.store.list_objects():
            if other.name == app.name and other.namespace != app.namespace:
                raise InputException(
                    f"Application {app.resource_id} has the same name as "
                    f"{other.resource_id}; tracking label values must be unique"
                )
        self.store.add_object(app)
        _LOGGER.info("Registered application %s", app.resource_id)
        return app.resource_id

    async def unregister(
        self, resource_id: NamedResource, cascade: bool = False
    ) -> None:
        """Remove an Application, optionally deleting its live resources.

        A queued sync is dropped and a running sync is allowed to finish
        before the Application is removed.
        """
        app = self._get(resource_id)
        selector = self.observer.selector(app)
        self.scheduler.cancel(resource_id)
        await self.scheduler.wait_idle(resource_id)
        self.store.remove_object(resource_id)
        _LOGGER.info("Unregistered application %s", resource_id)
        if not cascade:
            return
        client = self._cluster_provider(app.destination)
        deltas = diff_resources([], await client.get(selector), prune=True)
        await ApplyExecutor(client, self.config.executor).apply_all(deltas)
        _LOGGER.info("Deleted %d resources of %s", len(deltas), resource_id)

    async def update_policy(
        self, resource_id: NamedResource, policy: SyncPolicy
    ) -> None:
        """Replace the sync policy of an Application."""
        app = self._get(resource_id)
        self.store.add_object(replace(app, sync_policy=policy))
        if policy.automated and not app.sync_policy.automated:
            await self.poll_revision(resource_id)

    def trigger(
        self,
        resource_id: NamedResource,
        cause: TriggerCause,
        revision: str | None = None,
    ) -> TriggerResult:
        """Request a sync of an Application."""
        return self.scheduler.trigger(resource_id, cause, revision)

    async def sync(
        self, resource_id: NamedResource, revision: str | None = None
    ) -> SyncOperation:
        """Run a manual sync and wait for its result."""
        return await self.scheduler.sync(resource_id, TriggerCause.MANUAL, revision)

    def cancel(self, resource_id: NamedResource) -> bool:
        """Drop the queued sync of an Application."""
        return self.scheduler.cancel(resource_id)

    async def webhook(
        self, repo_url: str, ref: str | None = None
    ) -> list[NamedResource]:
        """Handle a push notification for a repository.

        Automated Applications tracking the pushed ref are synced, other
        Applications of the repository are refreshed. Returns the affected
        Applications.
        """
        url = _normalize_url(repo_url)
        affected = []
        for app in self.store.list_objects():
            if _normalize_url(app.source.repo_url) != url:
                continue
            if ref and not _ref_matches(app.source.target_revision, ref):
                continue
            affected.append(app.resource_id)
            if app.sync_policy.automated and app.resource_id not in self._suspended:
                self.scheduler.trigger(app.resource_id, TriggerCause.WEBHOOK)
            else:
                await self.refresh(app.resource_id)
        _LOGGER.info("Webhook for %s affected %d applications", repo_url, len(affected))
        return affected

    async def refresh(self, resource_id: NamedResource) -> ComparisonResult:
        """Fetch, observe and compare an Application without syncing it."""
        await self.poll_revision(resource_id, trigger=False)
        return await self.observe(resource_id, heal=False)

    def _autosync_allowed(self, resource_id: NamedResource, revision: str) -> bool:
        if resource_id in self._suspended:
            _LOGGER.debug("Skipping automated sync of %s: suspended", resource_id)
            return False
        last = self.scheduler.last_operation(resource_id)
        if last is None or last.phase != OperationPhase.FAILED:
            return True
        if last.resolved_revision == revision:
            _LOGGER.debug(
                "Skipping automated sync of %s: failed previous sync of %s",
                resource_id,
                revision,
            )
            return False
        if last.resolved_revision is None and last.finished_at is not None:
            retry_at = last.finished_at + datetime.timedelta(
                seconds=self.config.self_heal_timeout
            )
            if utcnow() < retry_at:
                _LOGGER.debug(
                    "Skipping automated sync of %s: previous sync failed, "
                    "retrying after %s",
                    resource_id,
                    retry_at,
                )
                return False
        return True

    async def poll_revision(
        self, resource_id: NamedResource, trigger: bool = True
    ) -> DesiredManifestSet | None:
        """Fetch the target revision, syncing automated Applications on change."""
        app = self._get(resource_id)
        try:
            desired = await self.fetcher.fetch(
                app.source, default_namespace=app.destination.namespace
            )
        except SyncLoopException as err:
            _LOGGER.warning("Unable to fetch source of %s: %s", resource_id, err)
            self.store.set_artifact(resource_id, ComparisonResult(error=str(err)))
            return None
        self.store.set_artifact(resource_id, desired)
        if (
            trigger
            and app.sync_policy.automated
            and self._synced_revision.get(resource_id) != desired.revision
            and self._autosync_allowed(resource_id, desired.revision)
        ):
            _LOGGER.info(
                "Revision of %s is now %s, syncing", resource_id, desired.revision
            )
            self.scheduler.trigger(resource_id, TriggerCause.TIMER)
        return desired

    async def observe(
        self, resource_id: NamedResource, heal: bool = True
    ) -> ComparisonResult:
        """Observe the live state, evaluate health and compare to the desired state."""
        app = self._get(resource_id)
        snapshot = await self.observer.poll(app)
        desired = self.store.get_artifact(resource_id, DesiredManifestSet)
        expected = desired.resource_ids if desired else ()
        report = self.health.evaluate(resource_id, snapshot, expected)
        self.store.set_artifact(resource_id, report)
        await self._update_suspension(app, report)

        comparison = self._compare(app, desired, snapshot)
        if (
            heal
            and app.sync_policy.automated
            and app.sync_policy.self_heal
            and desired is not None
            and not snapshot.stale
            and comparison.has_actionable_drift
            and self.scheduler.phase(resource_id) == SyncPhase.IDLE
            and self._autosync_allowed(resource_id, desired.revision)
        ):
            _LOGGER.info("Drift detected for %s, self healing", resource_id)
            self.scheduler.trigger(resource_id, TriggerCause.SELF_HEAL)
        return comparison

    def _compare(
        self,
        app: Application,
        desired: DesiredManifestSet | None,
        snapshot: LiveSnapshot,
    ) -> ComparisonResult:
        if desired is None:
            if (previous := self.store.get_artifact(app.resource_id, ComparisonResult)):
                return previous
            comparison = ComparisonResult(error="Desired state has not been fetched")
        elif snapshot.stale and not snapshot.resources:
            comparison = ComparisonResult(
                revision=desired.revision, error=snapshot.error
            )
        else:
            deltas = diff_resources(
                desired.resources,
                snapshot.resources,
                prune=app.sync_policy.prune,
                ignore_differences=app.ignore_differences,
            )
            comparison = ComparisonResult(
                revision=desired.revision, deltas=tuple(deltas)
            )
        self.store.set_artifact(app.resource_id, comparison)
        return comparison

    async def _update_suspension(self, app: Application, report: HealthReport) -> None:
        resource_id = app.resource_id
        status = report.status
        previous = self._last_health.get(resource_id)
        self._last_health[resource_id] = status
        if report.stale:
            return
        if (
            status == HealthStatus.DEGRADED
            and previous != HealthStatus.DEGRADED
            and self.config.suspend_autosync_on_degraded
            and app.sync_policy.automated
            and resource_id not in self._suspended
        ):
            self._suspended.add(resource_id)
            await self._notify(
                SyncEvent(
                    resource_id,
                    EventType.AUTOSYNC_SUSPENDED,
                    "Application is Degraded",
                )
            )
        elif status != HealthStatus.DEGRADED and resource_id in self._suspended:
            self._suspended.discard(resource_id)
            await self._notify(
                SyncEvent(
                    resource_id, EventType.AUTOSYNC_RESUMED, f"Application is {status}"
                )
            )

    async def _execute(self, op: SyncOperation) -> None:
        """Perform a sync operation admitted by the scheduler."""
        app = self._get(op.application)
        with trace_context("Fetch"):
            desired = await self.fetcher.fetch(
                app.source, op.revision, app.destination.namespace
            )
        op.resolved_revision = desired.revision
        if op.revision is None:
            self.store.set_artifact(app.resource_id, desired)
        with trace_context("Observe"):
            snapshot = await self.observer.snapshot(app, desired)
        op.deltas = diff_resources(
            desired.resources,
            snapshot.resources,
            prune=app.sync_policy.prune,
            ignore_differences=app.ignore_differences,
        )
        client = self._cluster_provider(app.destination)
        outcome = await ApplyExecutor(client, self.config.executor).apply_all(
            op.deltas, app.tracking_labels
        )
        op.results = outcome.results
        op.succeed()
        self._synced_revision[app.resource_id] = desired.revision

    async def _on_finished(self, op: SyncOperation) -> None:
        resource_id = op.application
        if op.phase == OperationPhase.SUCCEEDED:
            await self._notify(
                SyncEvent(
                    resource_id,
                    EventType.SYNC_SUCCEEDED,
                    f"{len(op.results)} resources changed",
                    revision=op.resolved_revision,
                )
            )
            if op.cause == TriggerCause.MANUAL and resource_id in self._suspended:
                self._suspended.discard(resource_id)
                await self._notify(
                    SyncEvent(
                        resource_id, EventType.AUTOSYNC_RESUMED, "Manual sync succeeded"
                    )
                )
        else:
            await self._notify(
                SyncEvent(
                    resource_id,
                    EventType.SYNC_FAILED,
                    op.error or "",
                    revision=op.resolved_revision,
                    cause=op.error_cause,
                )
            )
        if self.store.get_object(resource_id) is not None:
            await self.observe(resource_id, heal=False)

    async def _notify(self, event: SyncEvent) -> None:
        try:
            await self._notifier.notify(event)
        except Exception:
            _LOGGER.exception("Notification sink failed for %s", event.application)

    def is_suspended(self, resource_id: NamedResource) -> bool:
        """Return True if automated syncs of the Application are suspended."""
        return resource_id in self._suspended

    def status(self, resource_id: NamedResource) -> ApplicationStatus:
        """Return the current state of an Application."""
        self._get(resource_id)
        status_info = self.store.get_status(resource_id)
        comparison = self.store.get_artifact(resource_id, ComparisonResult)
        report = self.store.get_artifact(resource_id, HealthReport)
        snapshot = self.store.get_artifact(resource_id, LiveSnapshot)
        desired = self.store.get_artifact(resource_id, DesiredManifestSet)
        return ApplicationStatus(
            application=resource_id,
            phase=status_info.phase if status_info else SyncPhase.IDLE,
            sync_status=comparison.sync_status if comparison else SyncStatus.UNKNOWN,
            health=report.status if report else None,
            revision=self._synced_revision.get(resource_id),
            target_revision=desired.revision if desired else None,
            last_operation=self.scheduler.last_operation(resource_id),
            error=status_info.error if status_info else None,
            error_cause=status_info.cause if status_info else None,
            autosync_suspended=resource_id in self._suspended,
            stale=snapshot.stale if snapshot else False,
        )

    def close(self) -> None:
        """Stop listening to the store."""
        self._remove_listener()
