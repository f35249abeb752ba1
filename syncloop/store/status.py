"""Sync status information for an application."""

from enum import StrEnum
from dataclasses import dataclass

from syncloop.exceptions import ErrorCause


class SyncPhase(StrEnum):
    """Position of an application in the sync state machine."""

    IDLE = "Idle"
    QUEUED = "Queued"
    SYNCING = "Syncing"
    FAILED = "Failed"


class SyncStatus(StrEnum):
    """Whether the live state matches the desired state."""

    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"
    UNKNOWN = "Unknown"


@dataclass
class StatusInfo:
    """Sync phase and the last error recorded for an application."""

    phase: SyncPhase
    error: str | None = None
    cause: ErrorCause | None = None

    def __str__(self) -> str:
        """Return a string representation of the status."""
        if self.error:
            return f"{self.phase}: {self.error}"
        return str(self.phase)
