"""Syncloop get action."""

import logging
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast, Any

from syncloop.manifest import Application
from syncloop.orchestrator import ApplicationStatus

from .format import PrintFormatter, formatter
from . import selector


_LOGGER = logging.getLogger(__name__)


def _app_row(app: Application) -> dict[str, Any]:
    return {
        "namespace": app.namespace,
        "name": app.name,
        "repo": app.source.repo_url,
        "path": app.source.path,
        "revision": app.source.target_revision,
        "destination": app.destination.namespace,
        "automated": app.sync_policy.automated,
    }


def status_row(status: ApplicationStatus) -> dict[str, Any]:
    """Return the table row for the status of an Application."""
    return {
        "name": status.application.name,
        "sync": status.sync_status,
        "health": status.health,
        "phase": status.phase,
        "revision": status.target_revision[:12] if status.target_revision else None,
        "cause": status.error_cause,
        "suspended": status.autosync_suspended,
    }


class GetAction:
    """Get details about Applications."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "get",
                help="Get Application objects",
                description="Print information about Application objects, "
                "optionally with their live sync and health status",
            ),
        )
        selector.add_selector_flags(args)
        args.add_argument(
            "--output",
            "-o",
            choices=["table", "status", "yaml", "json"],
            default="table",
            help="Output format of the command, status compares with the cluster",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if output != "status":
            apps = await selector.build_applications(**kwargs)
            if not apps:
                print(selector.not_found(kwargs["path"]))
                return
            if output == "table":
                PrintFormatter().print([_app_row(app) for app in apps])
            else:
                formatter(output).print([app.to_dict() for app in apps])
            return

        orchestrator, apps = await selector.build_orchestrator(**kwargs)
        if not apps:
            print(selector.not_found(kwargs["path"]))
            return
        rows = []
        for app in apps:
            await orchestrator.refresh(app.resource_id)
            rows.append(status_row(orchestrator.status(app.resource_id)))
        PrintFormatter().print(rows)
