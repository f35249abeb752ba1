"""Records of sync operations."""

from dataclasses import dataclass, field
import datetime
from enum import StrEnum

from .exceptions import ErrorCause
from .health import HealthStatus
from .manifest import NamedResource
from .resource_diff import DeltaAction, ResourceDelta
from .store import utcnow

__all__ = [
    "TriggerCause",
    "OperationPhase",
    "ResourceResult",
    "SyncOperation",
]


class TriggerCause(StrEnum):
    """What requested a sync."""

    TIMER = "timer"
    WEBHOOK = "webhook"
    MANUAL = "manual"
    SELF_HEAL = "self-heal"

    @property
    def priority(self) -> int:
        """Priority when coalescing requests, higher wins."""
        return _PRIORITY[self]


_PRIORITY = {
    TriggerCause.TIMER: 0,
    TriggerCause.SELF_HEAL: 1,
    TriggerCause.WEBHOOK: 2,
    TriggerCause.MANUAL: 3,
}


class OperationPhase(StrEnum):
    """Phase of a sync operation."""

    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class ResourceResult:
    """Outcome of applying a single delta."""

    resource_id: NamedResource
    action: DeltaAction
    health: HealthStatus | None = None
    """Health observed after the apply, None for deletes or failures."""

    attempts: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class SyncOperation:
    """A single diff and apply cycle of an application.

    The operation is created in the Running phase when the scheduler admits
    it and is terminal once it Succeeded or Failed.
    """

    application: NamedResource
    cause: TriggerCause
    revision: str | None = None
    """The revision pointer requested, None for the source target revision."""

    resolved_revision: str | None = None
    """The immutable revision that was applied."""

    phase: OperationPhase = OperationPhase.RUNNING
    deltas: list[ResourceDelta] = field(default_factory=list)
    results: list[ResourceResult] = field(default_factory=list)
    started_at: datetime.datetime = field(default_factory=utcnow)
    finished_at: datetime.datetime | None = None
    error: str | None = None
    error_cause: ErrorCause | None = None

    @property
    def done(self) -> bool:
        return self.phase != OperationPhase.RUNNING

    @property
    def duration(self) -> datetime.timedelta | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def succeed(self) -> None:
        """Mark the operation as finished successfully."""
        self.phase = OperationPhase.SUCCEEDED
        self.finished_at = utcnow()

    def fail(self, error: str, cause: ErrorCause) -> None:
        """Mark the operation as failed."""
        self.phase = OperationPhase.FAILED
        self.error = error
        self.error_cause = cause
        self.finished_at = utcnow()
