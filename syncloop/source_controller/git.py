"""Git repository source."""

import asyncio
import logging
from pathlib import Path

import git

from syncloop.exceptions import ManifestParseError, RevisionNotFound, SourceUnreachable
from syncloop.manifest import ApplicationSource
from syncloop.task import KeyedLock

from .cache import GitCache
from .source import DOCUMENT_SEPARATOR, MANIFEST_SUFFIXES, SourceBackend

_LOGGER = logging.getLogger(__name__)

FETCH_REFSPECS = ("+refs/heads/*:refs/heads/*", "+refs/tags/*:refs/tags/*")


class GitSource(SourceBackend):
    """A git repository, kept as a bare clone in the GitCache.

    Resolving a revision fetches the remote first so that branch pointers
    are current. Reading only touches the local clone.
    """

    def __init__(self, cache: GitCache) -> None:
        self._cache = cache
        # Git commands on the same clone must not interleave
        self._locks: KeyedLock[str] = KeyedLock()

    def _update_clone(self, url: str) -> git.Repo:
        repo_path = self._cache.get_repo_path(url)
        try:
            if (repo_path / "HEAD").exists():
                _LOGGER.debug("Fetching %s into %s", url, repo_path)
                repo = git.Repo(str(repo_path))
                repo.git.fetch("--prune", "--force", url, *FETCH_REFSPECS)
                return repo
            _LOGGER.info("Cloning repository %s to %s", url, repo_path)
            return git.Repo.clone_from(url, str(repo_path), bare=True)
        except git.exc.GitCommandError as e:
            raise SourceUnreachable(f"Git operation failed for {url}: {e}") from e

    def _resolve(self, url: str, revision: str) -> str:
        repo = self._update_clone(url)
        try:
            return str(
                repo.git.rev_parse("--verify", "--quiet", f"{revision}^{{commit}}")
            ).strip()
        except git.exc.GitCommandError as e:
            raise RevisionNotFound(url, revision) from e

    def _read(self, source: ApplicationSource, revision: str) -> bytes:
        repo_path = self._cache.get_repo_path(source.repo_url)
        if not (repo_path / "HEAD").exists():
            repo = self._update_clone(source.repo_url)
        else:
            repo = git.Repo(str(repo_path))
        try:
            tree = repo.commit(revision).tree
        except (ValueError, git.exc.BadName, git.exc.BadObject) as e:
            raise RevisionNotFound(source.repo_url, revision) from e
        if (subdir := source.path.strip("/")) not in ("", "."):
            try:
                tree = tree / subdir
            except KeyError as e:
                raise ManifestParseError(
                    f"Path '{source.path}' does not exist in {source.repo_url}"
                    f" at {revision}"
                ) from e
        blobs = sorted(
            (
                item
                for item in tree.traverse()
                if item.type == "blob" and Path(item.path).suffix in MANIFEST_SUFFIXES
            ),
            key=lambda blob: blob.path,
        )
        return DOCUMENT_SEPARATOR.join(blob.data_stream.read() for blob in blobs)

    async def resolve_revision(self, source: ApplicationSource, revision: str) -> str:
        """Fetch the repository and return the commit SHA of the revision."""
        async with self._locks.hold(source.repo_url):
            return await asyncio.to_thread(self._resolve, source.repo_url, revision)

    async def read(self, source: ApplicationSource, revision: str) -> bytes:
        """Return the manifests under the source path at the commit."""
        async with self._locks.hold(source.repo_url):
            return await asyncio.to_thread(self._read, source, revision)
