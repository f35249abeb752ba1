"""Tests for the format library."""

import io
import json

from syncloop.tool.format import (
    JsonFormatter,
    PrintFormatter,
    YamlFormatter,
    format_columns,
    formatter,
)


def test_format_columns_empty() -> None:
    """Tests with no rows."""
    assert list(format_columns([], [])) == []


def test_format_columns_empty_rows() -> None:
    """Tests with a header and no rows."""
    assert list(format_columns(["a", "b", "c"], [])) == ["a    b    c"]


def test_format_columns_rows() -> None:
    """Tests format with normal rows"""
    assert list(
        format_columns(
            ["name", "sync"], [["guestbook", "Synced"], ["billing", "OutOfSync"]]
        )
    ) == [
        "name         sync",
        "guestbook    Synced",
        "billing      OutOfSync",
    ]


def test_print_formatter() -> None:
    """Print formatting with empty data."""
    assert list(PrintFormatter().format([])) == []


def test_print_formatter_data() -> None:
    """Print formatting data objects, with missing values shown as a dash."""
    formatter_ = PrintFormatter()
    assert list(
        formatter_.format(
            [
                {"name": "guestbook", "health": "Healthy"},
                {"name": "billing", "health": None},
            ]
        )
    ) == [
        "NAME         HEALTH",
        "guestbook    Healthy",
        "billing      -",
    ]


def test_print_formatter_keys() -> None:
    """Print formatting with column names."""
    buf = io.StringIO()
    PrintFormatter(keys=["name"]).print(
        [{"name": "guestbook", "health": "Healthy"}], file=buf
    )
    assert buf.getvalue() == "NAME\nguestbook\n"


def test_yaml_formatter() -> None:
    """Print a document per object."""
    assert list(
        YamlFormatter().format(
            [
                {"application": "guestbook", "diffs": [{"name": "settings"}]},
                {"application": "billing", "diffs": []},
            ]
        )
    ) == [
        "---",
        "application: guestbook",
        "diffs:",
        "- name: settings",
        "---",
        "application: billing",
        "diffs: []",
        "",
    ]


def test_json_formatter() -> None:
    """Print objects as a json list."""
    buf = io.StringIO()
    data = [{"application": "guestbook", "status": "Synced"}]
    JsonFormatter().print(data, file=buf)
    assert json.loads(buf.getvalue()) == data


def test_formatter() -> None:
    """Select a formatter by output name."""
    assert isinstance(formatter("json"), JsonFormatter)
    assert isinstance(formatter("yaml"), YamlFormatter)
