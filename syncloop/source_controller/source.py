"""Version control sources of desired manifests.

A source backend maps a revision pointer (branch, tag, commit or `HEAD`) to
an immutable revision id, and reads the manifests stored under an
application path at that revision.
"""

from abc import ABC, abstractmethod
import asyncio
import hashlib
import logging
from pathlib import Path

import aiofiles

from syncloop.exceptions import ManifestParseError, RevisionNotFound, SourceUnreachable
from syncloop.manifest import ApplicationSource, DEFAULT_REVISION

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")
DOCUMENT_SEPARATOR = b"\n---\n"


class SourceBackend(ABC):
    """Interface to a version controlled source of manifests."""

    @abstractmethod
    async def resolve_revision(self, source: ApplicationSource, revision: str) -> str:
        """Return the immutable revision id the revision pointer refers to.

        Raises:
            SourceUnreachable: If the source can't be reached.
            RevisionNotFound: If the revision does not exist.
        """

    @abstractmethod
    async def read(self, source: ApplicationSource, revision: str) -> bytes:
        """Return the manifests under the source path at an immutable revision.

        The result is a YAML stream of every manifest file, in sorted path
        order.

        Raises:
            SourceUnreachable: If the source can't be reached.
            RevisionNotFound: If the revision does not exist.
            ManifestParseError: If the path does not exist at the revision.
        """


def local_path(repo_url: str) -> Path | None:
    """Return the local directory for a `file://` URL or plain path."""
    if repo_url.startswith("file://"):
        return Path(repo_url[len("file://") :])
    if "://" in repo_url or (repo_url.startswith("git@") and ":" in repo_url):
        return None
    return Path(repo_url)


class DirectorySource(SourceBackend):
    """A plain directory of manifests that is not under version control.

    The revision id is the SHA-256 of the manifest files, so it changes
    whenever the content does.
    """

    def _root(self, source: ApplicationSource) -> Path:
        if (root := local_path(source.repo_url)) is None or not root.is_dir():
            raise SourceUnreachable(f"Directory {source.repo_url} does not exist")
        path = (root / source.path).resolve()
        if not path.is_dir():
            raise ManifestParseError(
                f"Path '{source.path}' does not exist in {source.repo_url}"
            )
        return path

    async def _read_files(self, source: ApplicationSource) -> list[tuple[str, bytes]]:
        root = self._root(source)
        files = await asyncio.to_thread(
            lambda: sorted(
                p
                for p in root.rglob("*")
                if p.is_file() and p.suffix in MANIFEST_SUFFIXES
            )
        )
        contents: list[tuple[str, bytes]] = []
        for file in files:
            try:
                async with aiofiles.open(str(file), mode="rb") as fd:
                    contents.append((str(file.relative_to(root)), await fd.read()))
            except OSError as err:
                raise SourceUnreachable(f"Failed to read {file}: {err}") from err
        return contents

    @staticmethod
    def _digest(contents: list[tuple[str, bytes]]) -> str:
        digest = hashlib.sha256()
        for name, data in contents:
            digest.update(name.encode("utf-8"))
            digest.update(b"\0")
            digest.update(data)
            digest.update(b"\0")
        return digest.hexdigest()

    async def resolve_revision(self, source: ApplicationSource, revision: str) -> str:
        """Return the content digest of the directory."""
        digest = self._digest(await self._read_files(source))
        if revision not in ("", DEFAULT_REVISION, digest):
            raise RevisionNotFound(source.repo_url, revision)
        return digest

    async def read(self, source: ApplicationSource, revision: str) -> bytes:
        """Return the manifests in the directory."""
        contents = await self._read_files(source)
        if self._digest(contents) != revision:
            # The directory changed since the revision was resolved
            raise RevisionNotFound(source.repo_url, revision)
        return DOCUMENT_SEPARATOR.join(data for _, data in contents)
