"""Notification of sync events."""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass, field
import datetime
from enum import StrEnum
import logging

from .exceptions import ErrorCause
from .manifest import NamedResource
from .store import utcnow

__all__ = [
    "EventType",
    "SyncEvent",
    "NotificationSink",
    "LoggingNotificationSink",
    "QueueNotificationSink",
]

_LOGGER = logging.getLogger(__name__)


class EventType(StrEnum):
    """Kinds of events sent to a notification sink."""

    SYNC_SUCCEEDED = "SyncSucceeded"
    SYNC_FAILED = "SyncFailed"
    AUTOSYNC_SUSPENDED = "AutoSyncSuspended"
    AUTOSYNC_RESUMED = "AutoSyncResumed"


@dataclass(frozen=True)
class SyncEvent:
    """An event about an application."""

    application: NamedResource
    event_type: EventType
    message: str = ""
    revision: str | None = None
    cause: ErrorCause | None = None
    timestamp: datetime.datetime = field(default_factory=utcnow)


class NotificationSink(ABC):
    """Receives events about applications."""

    @abstractmethod
    async def notify(self, event: SyncEvent) -> None:
        """Deliver an event. Implementations must not raise."""


class LoggingNotificationSink(NotificationSink):
    """Writes events to the log."""

    async def notify(self, event: SyncEvent) -> None:
        level = logging.INFO
        if event.event_type in (EventType.SYNC_FAILED, EventType.AUTOSYNC_SUSPENDED):
            level = logging.WARNING
        _LOGGER.log(
            level,
            "%s %s%s%s",
            event.application,
            event.event_type,
            f" at {event.revision}" if event.revision else "",
            f": {event.message}" if event.message else "",
        )


class QueueNotificationSink(NotificationSink):
    """Collects events in a queue for a consumer to read."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[SyncEvent] = asyncio.Queue()

    async def notify(self, event: SyncEvent) -> None:
        self.queue.put_nowait(event)

    def drain(self) -> list[SyncEvent]:
        """Return the queued events without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events
