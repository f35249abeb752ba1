"""Application loader.

This module provides the ApplicationLoader class which reads Application
definitions from the filesystem so they can be registered with the
orchestrator.

Key Characteristics:
- Reads every YAML/JSON file of a directory, optionally recursively
- Documents that are not an argoproj.io Application are skipped
- Not involved in the reconciliation loop or watching for changes
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator

import aiofiles
import yaml

from syncloop.manifest import APPLICATION_DOMAIN, APPLICATION_KIND, Application
from syncloop.exceptions import InputException

__all__ = ["ApplicationLoader", "LoadOptions"]

_LOGGER = logging.getLogger(__name__)

SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class LoadOptions:
    """Options for loading Applications.

    Attributes:
        path: Filesystem path to load Applications from. Can be a file or directory.
        recursive: If True and path is a directory, load Applications from all
                  subdirectories as well.
    """

    path: Path
    recursive: bool = True

    def __post_init__(self) -> None:
        """Resolve the path after initialization."""
        self.path = Path(self.path).expanduser().resolve()


class ApplicationLoader:
    """Loads Applications from the filesystem."""

    def __init__(self) -> None:
        """Initialize the application loader."""
        self._processed_files: set[Path] = set()

    async def load(self, options: LoadOptions) -> AsyncGenerator[Application, None]:
        """Load Applications from the given options.

        Raises:
            InputException: If the path can't be read or holds invalid YAML
        """
        _LOGGER.info("Loading applications from %s", options.path)

        if not options.path.exists():
            raise InputException(f"Path does not exist: {options.path}")

        if options.path.is_file():
            async for app in self._load_file(options.path):
                yield app
        elif options.path.is_dir():
            async for app in self._load_directory(options.path, options):
                yield app
        else:
            raise InputException(f"Path is not a file or directory: {options.path}")

    async def _load_directory(
        self, path: Path, options: LoadOptions
    ) -> AsyncGenerator[Application, None]:
        _LOGGER.debug("Loading directory: %s", path)
        for entry in sorted(path.iterdir()):
            if entry.is_file() and entry.suffix.lower() in SUFFIXES:
                async for app in self._load_file(entry):
                    yield app
            elif (
                options.recursive
                and entry.is_dir()
                and not entry.name.startswith(".")
            ):
                async for app in self._load_directory(entry, options):
                    yield app

    async def _load_file(self, path: Path) -> AsyncGenerator[Application, None]:
        if path in self._processed_files:
            _LOGGER.debug("Skipping already processed file: %s", path)
            return
        self._processed_files.add(path)

        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise InputException(f"Failed to read file {path}: {e}") from e

        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as e:
            raise InputException(f"Invalid YAML in file {path}: {e}") from e

        for doc in docs:
            if not isinstance(doc, dict):
                continue
            if doc.get("kind") != APPLICATION_KIND or not str(
                doc.get("apiVersion", "")
            ).startswith(APPLICATION_DOMAIN):
                _LOGGER.debug("Skipping %s in %s", doc.get("kind"), path)
                continue
            yield Application.parse_doc(doc)


async def load_applications(path: Path, recursive: bool = True) -> list[Application]:
    """Return every Application found under the path."""
    loader = ApplicationLoader()
    return [app async for app in loader.load(LoadOptions(path, recursive))]
