"""Cache management for git repositories."""

import hashlib
import tempfile
import logging
from pathlib import Path
from urllib.parse import urlparse

from slugify import slugify

from syncloop.exceptions import SourceUnreachable

_LOGGER = logging.getLogger(__name__)


class GitCache:
    """Cache manager for git repositories.

    Every repository URL maps to one clone directory that is reused for all
    revisions. The cache persists for the lifetime of the process.
    """

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize the cache manager."""
        self._cache_dir = cache_dir or Path(tempfile.gettempdir()) / "syncloop-cache"
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._repos: dict[str, Path] = {}

    @staticmethod
    def slugify_url(url: str) -> str:
        """Extract and slugify a repository name from a URL.

        Handles scp-like SSH URLs (git@github.com:user/repo.git) as well as
        regular URLs.
        """
        parsed = urlparse(url)
        path = parsed.path
        if not parsed.scheme and "@" in url and ":" in url:
            path = url.split(":", 1)[1]
        path = path.rstrip("/")
        if path.endswith(".git"):
            path = path[:-4]
        name = path.split("/")[-1]
        slug = slugify(name, max_length=50, lowercase=True, separator="-")
        return slug or "repo"

    def get_repo_path(self, url: str) -> Path:
        """Get the local clone path for a repository URL."""
        if (path := self._repos.get(url)) is not None:
            return path
        hash_str = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        # e.g. /syncloop-cache/my-repo/ab1234567890abcdef
        cache_path = self._cache_dir / self.slugify_url(url) / hash_str
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SourceUnreachable(
                f"Failed to create cache directory for {url}: {e}"
            ) from e
        self._repos[url] = cache_path
        return cache_path
