"""
syncloop is a declarative reconciliation engine.

Applications bind a version controlled source of kubernetes manifests to a
destination cluster. syncloop fetches the desired state, observes the live
state, computes the difference and applies it, according to the sync policy
of each Application.
"""

__all__ = [
    "manifest",
    "exceptions",
    "config",
    "source_controller",
    "observer",
    "resource_diff",
    "health",
    "scheduler",
    "executor",
    "orchestrator",
    "cluster",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
