"""Syncloop sync action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast, Any, TextIO

from syncloop.exceptions import SyncLoopException
from syncloop.operation import OperationPhase, SyncOperation

from .format import PrintFormatter
from . import selector

_LOGGER = logging.getLogger(__name__)


def operation_row(op: SyncOperation) -> dict[str, Any]:
    """Return the table row for a finished sync operation."""
    changed = [r for r in op.results if r.succeeded]
    return {
        "name": op.application.name,
        "phase": op.phase,
        "revision": op.resolved_revision[:12] if op.resolved_revision else None,
        "changed": len(changed),
        "cause": op.error_cause,
        "error": op.error,
    }


class SyncAction:
    """Sync Applications to the cluster."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "sync",
                help="Sync Applications to the cluster",
                description="Apply the desired state of each Application once",
            ),
        )
        selector.add_selector_flags(args)
        args.add_argument(
            "--revision",
            default=None,
            help="Revision to sync instead of the target revision of the source",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        revision: str | None = None,
        file: TextIO | None = None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        orchestrator, apps = await selector.build_orchestrator(**kwargs)
        if not apps:
            print(selector.not_found(kwargs["path"]), file=file)
            return
        ops = []
        try:
            for app in apps:
                ops.append(await orchestrator.sync(app.resource_id, revision))
        finally:
            await orchestrator.stop()
        PrintFormatter(["name", "phase", "revision", "changed", "cause"]).print(
            [operation_row(op) for op in ops], file=file
        )
        if failed := [op for op in ops if op.phase == OperationPhase.FAILED]:
            for op in failed:
                _LOGGER.error("Sync of %s failed: %s", op.application, op.error)
            raise SyncLoopException(f"{len(failed)} application(s) failed to sync")
