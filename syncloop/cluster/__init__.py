"""Clients for reading and writing live cluster state."""

from .client import ClusterClient, ClusterProvider, ResourceSelector
from .in_memory import InMemoryCluster
from .kubectl import KubectlClusterClient, classify_error, kubectl_provider

__all__ = [
    "ClusterClient",
    "ClusterProvider",
    "ResourceSelector",
    "InMemoryCluster",
    "KubectlClusterClient",
    "classify_error",
    "kubectl_provider",
]
