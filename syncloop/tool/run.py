"""Syncloop run action."""

import asyncio
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast, TextIO

from .format import PrintFormatter
from .get import status_row
from . import selector

_LOGGER = logging.getLogger(__name__)


class RunAction:
    """Continuously reconcile Applications."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Run the reconciliation loop",
                description="Poll sources and the cluster and sync Applications "
                "according to their sync policy until interrupted",
            ),
        )
        selector.add_selector_flags(args)
        args.add_argument(
            "--once",
            action="store_true",
            help="Run a single reconciliation round, print the status and exit",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        once: bool = False,
        file: TextIO | None = None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        orchestrator, apps = await selector.build_orchestrator(**kwargs)
        if not apps:
            print(selector.not_found(kwargs["path"]), file=file)
            return

        if once:
            for app in apps:
                await orchestrator.poll_revision(app.resource_id)
            for app in apps:
                await orchestrator.scheduler.wait_idle(app.resource_id)
                await orchestrator.observe(app.resource_id, heal=False)
            await orchestrator.stop()
            PrintFormatter().print(
                [status_row(orchestrator.status(app.resource_id)) for app in apps],
                file=file,
            )
            return

        await orchestrator.start()
        _LOGGER.info("Reconciling %d applications", len(apps))
        try:
            await asyncio.Event().wait()
        finally:
            await orchestrator.stop()
