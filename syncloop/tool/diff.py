"""Syncloop diff action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import sys
from typing import cast, Any, TextIO

from syncloop.exceptions import SyncLoopException
from syncloop.manifest import Application
from syncloop.resource_diff import ComparisonResult, DeltaAction
from syncloop.store import SyncStatus

from .format import PrintFormatter, formatter
from . import selector

_LOGGER = logging.getLogger(__name__)

_TRUNCATE = "[Diff truncated by syncloop]"


def add_diff_flags(args: ArgumentParser) -> None:
    """Add diff flags."""
    args.add_argument(
        "--output",
        "-o",
        choices=["diff", "summary", "yaml", "json"],
        default="diff",
        help="Output format of the command",
    )
    args.add_argument(
        "--unified",
        "-u",
        type=int,
        default=3,
        help="output NUM (default 3) lines of unified context",
    )
    args.add_argument(
        "--limit-bytes",
        help="Maximum bytes for each diff output (0=unlimited)",
        type=int,
        default=0,
    )
    args.add_argument(
        "--exit-code",
        action="store_true",
        help="Exit with status 1 when any Application is out of sync",
    )


def diff_text(
    app: Application, comparison: ComparisonResult, n: int, limit_bytes: int
) -> str:
    """Return the unified diff of every changed resource of an Application."""
    parts = []
    for delta in comparison.deltas:
        if delta.action == DeltaAction.UNCHANGED:
            continue
        if delta.action == DeltaAction.PRUNE_SKIPPED:
            parts.append(f"# {delta.resource_id}: not in source, prune disabled\n")
            continue
        text = delta.unified_diff(app.ignore_differences, n=n)
        if limit_bytes and len(text) > limit_bytes:
            text = text[:limit_bytes] + "\n" + _TRUNCATE + "\n"
        parts.append(text)
    return "".join(parts)


def diff_objects(comparison: ComparisonResult) -> list[dict[str, Any]]:
    """Return the changed resources of a comparison as plain objects."""
    return [
        {
            "kind": delta.resource_id.kind,
            "namespace": delta.resource_id.namespace,
            "name": delta.resource_id.name,
            "action": str(delta.action),
            "changes": list(delta.changes),
        }
        for delta in comparison.deltas
        if delta.action != DeltaAction.UNCHANGED
    ]


class DiffAction:
    """Compare the desired state of Applications with the live cluster."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "diff",
                help="Diff Applications against the cluster",
                description="Show the changes a sync of each Application would make",
            ),
        )
        selector.add_selector_flags(args)
        add_diff_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        output: str,
        unified: int,
        limit_bytes: int,
        exit_code: bool = False,
        file: TextIO | None = None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        orchestrator, apps = await selector.build_orchestrator(**kwargs)
        if not apps:
            print(selector.not_found(kwargs["path"]), file=file)
            return

        out_of_sync = False
        summary: list[dict[str, Any]] = []
        structured: list[dict[str, Any]] = []
        for app in apps:
            comparison = await orchestrator.refresh(app.resource_id)
            if comparison.error:
                raise SyncLoopException(
                    f"Unable to compare {app.name}: {comparison.error}"
                )
            out_of_sync |= comparison.sync_status != SyncStatus.SYNCED
            if output == "diff":
                if text := diff_text(app, comparison, unified, limit_bytes):
                    print(text, end="", file=file)
            elif output == "summary":
                for obj in diff_objects(comparison):
                    summary.append({"application": app.name, **obj})
            else:
                structured.append(
                    {
                        "application": app.name,
                        "revision": comparison.revision,
                        "status": str(comparison.sync_status),
                        "diffs": diff_objects(comparison),
                    }
                )

        if output == "summary":
            cols = ["application", "kind", "namespace", "name", "action"]
            PrintFormatter(cols).print(summary, file=file)
        elif structured:
            formatter(output).print(structured, file=file)
        if exit_code and out_of_sync:
            sys.exit(1)
