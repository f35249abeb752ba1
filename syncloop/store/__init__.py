"""
The store module provides a central repository for tracking registered
applications, their sync phase, and the artifacts produced while
reconciling them (desired manifest sets, live snapshots, comparison results
and health reports).

- Uses the application NamedResource as the key for all objects.
- Artifacts are immutable and replaced as a whole, one per artifact type.
- Provides query, update and watch APIs for the controllers.

The abstract interface allows for in-memory or persistent implementations.
"""

from .store import Store, StoreEvent
from .in_memory import InMemoryStore
from .artifact import Artifact, utcnow
from .status import SyncPhase, SyncStatus, StatusInfo

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
    "Artifact",
    "SyncPhase",
    "SyncStatus",
    "StatusInfo",
    "utcnow",
]
