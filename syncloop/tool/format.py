"""Library for formatting command output as tables, YAML or JSON."""

from abc import ABC, abstractmethod
from collections.abc import Generator
import json
from typing import Any, TextIO

import yaml

PADDING = 4
EMPTY_CELL = "-"


def column_format_string(rows: list[list[str]]) -> str:
    """Produce a format string based on max width of columns."""
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    return "".join(f"{{:{width + PADDING}}}" for width in widths)


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the header and rows aligned in columns."""
    data = [headers] + rows
    if not (format_string := column_format_string(data)):
        return
    for row in data:
        yield format_string.format(*row).rstrip()


def _cell(value: Any) -> str:
    if value is None:
        return EMPTY_CELL
    return str(value)


class PrintFormatter:
    """A formatter that prints a human readable table."""

    def __init__(self, keys: list[str] | None = None) -> None:
        """Initialize the PrintFormatter with the keys of the columns to print."""
        self._keys = keys

    def format(self, data: list[dict[str, Any]]) -> Generator[str, None, None]:
        """Yield a line per row, the keys of the first row are the default columns."""
        if not data:
            return
        keys = self._keys if self._keys is not None else list(data[0])
        rows = [[_cell(row.get(key)) for key in keys] for row in data]
        yield from format_columns([key.upper() for key in keys], rows)

    def print(self, data: list[dict[str, Any]], file: TextIO | None = None) -> None:
        """Print the table."""
        for line in self.format(data):
            print(line, file=file)


class StructFormatter(ABC):
    """A formatter that prints plain objects."""

    @abstractmethod
    def dumps(self, data: list[Any]) -> str:
        """Return the serialized objects."""

    def format(self, data: list[Any]) -> Generator[str, None, None]:
        """Yield the output line by line."""
        yield from self.dumps(data).split("\n")

    def print(self, data: list[Any], file: TextIO | None = None) -> None:
        """Print the objects."""
        print(self.dumps(data), end="", file=file)


class YamlFormatter(StructFormatter):
    """Prints a YAML document per object."""

    def dumps(self, data: list[Any]) -> str:
        return yaml.dump_all(data, sort_keys=False, explicit_start=True)


class JsonFormatter(StructFormatter):
    """Prints the objects as a JSON list."""

    def dumps(self, data: list[Any]) -> str:
        return json.dumps(data, indent=4, sort_keys=False) + "\n"


def formatter(output: str) -> StructFormatter:
    """Return the structured formatter for an output name."""
    if output == "json":
        return JsonFormatter()
    return YamlFormatter()
