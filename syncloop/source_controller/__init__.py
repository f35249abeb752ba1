"""The source controller module.

This module resolves application sources to desired manifest sets.
"""

from .artifact import DesiredManifestSet
from .cache import GitCache
from .controller import DesiredStateFetcher, RoutingSource
from .git import GitSource
from .source import DirectorySource, SourceBackend

__all__ = [
    "DesiredManifestSet",
    "DesiredStateFetcher",
    "DirectorySource",
    "GitCache",
    "GitSource",
    "RoutingSource",
    "SourceBackend",
]
