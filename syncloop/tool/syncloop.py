"""Command line tool for reconciling Applications with a cluster."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from syncloop.exceptions import SyncLoopException
from . import diff, get, run, sync

_LOGGER = logging.getLogger(__name__)

ACTIONS = [get.GetAction, diff.DiffAction, sync.SyncAction, run.RunAction]


def _block_str_presenter(dumper: yaml.Dumper, data: str) -> Any:
    """Dump multi-line strings (e.g. a last applied configuration) as blocks."""
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="syncloop",
        description="Sync Applications declared in version control to a cluster.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log to stderr at this level",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)
    for action in ACTIONS:
        action.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Syncloop command line tool main entry point."""
    yaml.add_representer(str, _block_str_presenter)
    args = _make_parser().parse_args(argv)
    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted")
    except SyncLoopException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print(f"syncloop error: {err}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
