"""ClusterClient that shells out to kubectl.

Errors reported by kubectl are classified by their message into the
cluster exceptions so that transient failures can be retried.
"""

import json
import logging
from typing import Any

import yaml

from syncloop import command
from syncloop.exceptions import (
    ClusterException,
    ClusterUnreachable,
    CommandException,
    RateLimited,
    Unauthorized,
    ValidationRejected,
)
from syncloop.manifest import ApplicationDestination, NamedResource, Resource

from .client import ClusterClient, ClusterProvider, ResourceSelector

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"

_UNAUTHORIZED = ("forbidden", "unauthorized", "you must be logged in")
_RATE_LIMITED = ("toomanyrequests", "too many requests", "rate limit")
_UNREACHABLE = (
    "unable to connect",
    "connection refused",
    "i/o timeout",
    "timed out",
    "no such host",
    "tls handshake timeout",
    "serviceunavailable",
)
_REJECTED = (
    "invalid",
    "error validating",
    "admission webhook",
    "no matches for kind",
    "doesn't have a resource type",
    "unprocessable",
)


def classify_error(message: str) -> ClusterException:
    """Return the cluster exception matching a kubectl error message."""
    lower = message.lower()
    for needles, exc in (
        (_UNAUTHORIZED, Unauthorized),
        (_RATE_LIMITED, RateLimited),
        (_UNREACHABLE, ClusterUnreachable),
        (_REJECTED, ValidationRejected),
    ):
        if any(needle in lower for needle in needles):
            return exc(message)
    return ClusterException(message)


class KubectlClusterClient(ClusterClient):
    """ClusterClient for the cluster of a kubeconfig context."""

    def __init__(
        self,
        context: str | None = None,
        kubeconfig: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize KubectlClusterClient.

        Args:
            context: The kubeconfig context, defaults to the current context
            kubeconfig: Path to the kubeconfig file
            timeout: Seconds to wait for each kubectl invocation
        """
        self._context = context
        self._kubeconfig = kubeconfig
        self._timeout = timeout

    def _command(self, args: list[str]) -> command.Command:
        cmd = [KUBECTL_BIN]
        if self._kubeconfig:
            cmd.extend(["--kubeconfig", self._kubeconfig])
        if self._context:
            cmd.extend(["--context", self._context])
        return command.Command(cmd + args, timeout=self._timeout)

    async def _run(self, args: list[str], stdin: bytes | None = None) -> str:
        try:
            return await command.run(self._command(args), stdin)
        except CommandException as err:
            raise classify_error(str(err)) from err

    async def get(self, selector: ResourceSelector) -> list[Resource]:
        """Return the live resources matching the selector."""
        args = ["get", ",".join(selector.kinds) or "all", "-o", "json"]
        if selector.labels:
            args.extend(["-l", selector.label_selector])
        if selector.namespace:
            args.extend(["-n", selector.namespace])
        else:
            args.append("--all-namespaces")
        out = await self._run(args)
        items = _parse_json(out).get("items") or []
        resources = [Resource.parse_doc(item) for item in items]
        return [resource for resource in resources if selector.matches(resource)]

    async def get_resource(self, resource_id: NamedResource) -> Resource | None:
        """Return a single live resource or None if it does not exist."""
        args = ["get", resource_id.kind, resource_id.name, "-o", "json"]
        args.append("--ignore-not-found")
        if resource_id.namespace:
            args.extend(["-n", resource_id.namespace])
        if not (out := await self._run(args)).strip():
            return None
        return Resource.parse_doc(_parse_json(out))

    async def apply(self, resource: Resource) -> Resource:
        """Create or update a resource, returning the live object."""
        content = yaml.dump(resource.body, sort_keys=False).encode("utf-8")
        out = await self._run(["apply", "-f", "-", "-o", "json"], stdin=content)
        return Resource.parse_doc(_parse_json(out))

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete a resource. Deleting a missing resource is not an error."""
        args = ["delete", resource_id.kind, resource_id.name]
        if resource_id.namespace:
            args.extend(["-n", resource_id.namespace])
        args.extend(["--ignore-not-found", "--wait=false"])
        await self._run(args)
        _LOGGER.debug("Deleted %s", resource_id)


def _parse_json(out: str) -> dict[str, Any]:
    try:
        doc = json.loads(out)
    except ValueError as err:
        raise ClusterException(f"Unable to parse kubectl output: {err}") from err
    if not isinstance(doc, dict):
        raise ClusterException(f"Unexpected kubectl output: {out[:200]}")
    return doc


def kubectl_provider(
    contexts: dict[str, str] | None = None,
    kubeconfig: str | None = None,
    default_context: str | None = None,
) -> ClusterProvider:
    """Return a provider creating one kubectl client per destination server.

    Args:
        contexts: Kubeconfig context name by destination server URL
        kubeconfig: Path to the kubeconfig file
        default_context: Context for servers missing from `contexts`,
            defaults to the current context
    """
    contexts = contexts or {}
    clients: dict[str, ClusterClient] = {}

    def provider(destination: ApplicationDestination) -> ClusterClient:
        if (client := clients.get(destination.server)) is None:
            client = KubectlClusterClient(
                context=contexts.get(destination.server, default_context),
                kubeconfig=kubeconfig,
            )
            clients[destination.server] = client
        return client

    return provider
