"""Artifact representation."""

from abc import ABC
from dataclasses import dataclass, field
import datetime


def utcnow() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True, kw_only=True)
class Artifact(ABC):
    """Base class for all artifacts.

    Artifacts are immutable. Producers publish a new instance to the store
    rather than modifying an existing one, so a reader always sees a
    complete value.
    """

    created_at: datetime.datetime = field(default_factory=utcnow)
    """When the artifact was produced."""

    def age(self, now: datetime.datetime | None = None) -> datetime.timedelta:
        """Return how long ago the artifact was produced."""
        return (now or utcnow()) - self.created_at
