"""Desired state fetcher.

The fetcher resolves the revision pointer of an application source to an
immutable revision and reads the manifests at that revision. Results are
cached by (repository, path, revision) and never invalidated, since the
content of an immutable revision can't change.

Supported sources:
    - git repositories (any URL git understands, including file://)
    - plain directories, whose revision is a digest of their content
"""

import logging
from pathlib import Path

from syncloop.config import SourceControllerConfig
from syncloop.manifest import ApplicationSource, parse_manifests
from syncloop.task import KeyedLock

from .artifact import DesiredManifestSet
from .cache import GitCache
from .git import GitSource
from .source import DirectorySource, SourceBackend, local_path

_LOGGER = logging.getLogger(__name__)

CacheKey = tuple[str, str, str, str]


class RoutingSource(SourceBackend):
    """Dispatches to a git or directory backend based on the repository URL."""

    def __init__(self, cache: GitCache) -> None:
        self._git = GitSource(cache)
        self._directory = DirectorySource()

    def backend_for(self, source: ApplicationSource) -> SourceBackend:
        """Return the backend able to read the source."""
        path = local_path(source.repo_url)
        if path is not None and path.is_dir() and not (
            (path / ".git").exists() or (path / "HEAD").exists()
        ):
            return self._directory
        return self._git

    async def resolve_revision(self, source: ApplicationSource, revision: str) -> str:
        return await self.backend_for(source).resolve_revision(source, revision)

    async def read(self, source: ApplicationSource, revision: str) -> bytes:
        return await self.backend_for(source).read(source, revision)


class DesiredStateFetcher:
    """Fetches and caches the desired manifest sets of application sources."""

    def __init__(
        self,
        config: SourceControllerConfig | None = None,
        backend: SourceBackend | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: The configuration for the fetcher
            backend: The source backend, defaults to routing between git
                repositories and plain directories
        """
        self._config = config or SourceControllerConfig()
        if backend is None:
            cache_dir = Path(self._config.cache_dir) if self._config.cache_dir else None
            backend = RoutingSource(GitCache(cache_dir))
        self._backend = backend
        self._cache: dict[CacheKey, DesiredManifestSet] = {}
        self._locks: KeyedLock[CacheKey] = KeyedLock()

    async def resolve_revision(
        self, source: ApplicationSource, revision: str | None = None
    ) -> str:
        """Resolve a revision pointer, defaulting to the source target revision."""
        return await self._backend.resolve_revision(
            source, revision or source.target_revision
        )

    async def fetch(
        self,
        source: ApplicationSource,
        revision: str | None = None,
        default_namespace: str | None = None,
    ) -> DesiredManifestSet:
        """Return the desired manifest set of the source at a revision.

        Args:
            source: The application source
            revision: Revision pointer, defaults to the source target revision
            default_namespace: Namespace for resources that don't declare one

        Raises:
            SourceUnreachable: If the source can't be reached
            RevisionNotFound: If the revision does not exist
            ManifestParseError: If the manifests are malformed
        """
        resolved = await self.resolve_revision(source, revision)
        key: CacheKey = (
            source.repo_url,
            source.path,
            resolved,
            default_namespace or "",
        )
        if (cached := self._cache.get(key)) is not None:
            _LOGGER.debug("Using cached manifests for %s@%s", source.repo_url, resolved)
            return cached
        async with self._locks.hold(key):
            if (cached := self._cache.get(key)) is not None:
                return cached
            content = await self._backend.read(source, resolved)
            resources = parse_manifests(content, default_namespace)
            manifest_set = DesiredManifestSet(
                repo_url=source.repo_url,
                path=source.path,
                revision=resolved,
                resources=tuple(resources),
            )
            self._cache[key] = manifest_set
        _LOGGER.info(
            "Fetched %d resources from %s (%s) at %s",
            len(resources),
            source.repo_url,
            source.path,
            resolved,
        )
        return manifest_set

    def cached_revisions(self) -> list[CacheKey]:
        """Return the keys of the cached manifest sets."""
        return list(self._cache)
