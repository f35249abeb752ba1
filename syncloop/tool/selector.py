"""Library for common command line flags and the objects built from them."""

from argparse import (
    ArgumentParser,
    Action,
    ArgumentError,
    Namespace,
)
import logging
import pathlib
from typing import Any

from syncloop.cluster import ClusterProvider, kubectl_provider
from syncloop.config import OrchestratorConfig
from syncloop.exceptions import InputException
from syncloop.manifest import Application
from syncloop.orchestrator import Orchestrator
from syncloop.orchestrator.loader import load_applications
from syncloop.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)


class ContextAppendAction(Action):
    """Append a kubeconfig context, optionally bound to a server as server=context."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        result = getattr(namespace, self.dest) or {}
        for value in values.split(","):
            if not value:
                continue
            server, sep, context = value.rpartition("=")
            if sep and not (server and context):
                raise ArgumentError(
                    self, f"Expected context or server=context format from '{value}'"
                )
            result[server or None] = context
        setattr(namespace, self.dest, result)


def add_selector_flags(args: ArgumentParser) -> None:
    """Add the flags for selecting Applications and the cluster."""
    args.add_argument(
        "path",
        help="Path to a file or directory of Application definitions",
        type=pathlib.Path,
    )
    args.add_argument(
        "--app",
        "-a",
        dest="app_names",
        action="append",
        default=None,
        help="Only use the Applications with this name, may be repeated",
    )
    args.add_argument(
        "--context",
        dest="contexts",
        action=ContextAppendAction,
        default=None,
        help="Kubeconfig context, or server=context to map a destination "
        "server to a context. Defaults to the current context.",
    )
    args.add_argument(
        "--kubeconfig",
        default=None,
        help="Path to the kubeconfig file",
    )
    args.add_argument(
        "--config",
        type=pathlib.Path,
        default=None,
        help="YAML file with the orchestrator configuration",
    )


async def build_applications(
    path: pathlib.Path, app_names: list[str] | None = None, **kwargs: Any
) -> list[Application]:
    """Load the Applications selected by the flags."""
    apps = await load_applications(path)
    if app_names:
        apps = [app for app in apps if app.name in app_names]
        if missing := set(app_names) - {app.name for app in apps}:
            raise InputException(
                f"Application(s) not found in {path}: {', '.join(sorted(missing))}"
            )
    _LOGGER.debug("Selected %d applications", len(apps))
    return apps


def build_config(
    config: pathlib.Path | None = None, **kwargs: Any
) -> OrchestratorConfig:
    """Return the orchestrator configuration selected by the flags."""
    if config is None:
        return OrchestratorConfig()
    return OrchestratorConfig.from_yaml_file(config)


def build_cluster_provider(
    contexts: dict[str | None, str] | None = None,
    kubeconfig: str | None = None,
    **kwargs: Any,
) -> ClusterProvider:
    """Return the cluster provider selected by the flags."""
    contexts = dict(contexts or {})
    default_context = contexts.pop(None, None)
    return kubectl_provider(
        contexts={server: ctx for server, ctx in contexts.items() if server},
        kubeconfig=kubeconfig,
        default_context=default_context,
    )


def not_found(path: pathlib.Path) -> str:
    """Return a not found message for a path without Applications."""
    return f"No Application objects found in {path}"


async def build_orchestrator(**kwargs: Any) -> tuple[Orchestrator, list[Application]]:
    """Create an orchestrator with the selected Applications registered."""
    apps = await build_applications(**kwargs)
    orchestrator = Orchestrator(
        InMemoryStore(),
        build_cluster_provider(**kwargs),
        build_config(**kwargs),
    )
    for app in apps:
        orchestrator.register(app)
    return orchestrator, apps
