"""Tests for the command line selector flags."""

from argparse import ArgumentParser
from pathlib import Path
from typing import Any

import pytest

from syncloop.cluster import KubectlClusterClient
from syncloop.config import OrchestratorConfig
from syncloop.exceptions import InputException
from syncloop.manifest import ApplicationDestination
from syncloop.tool.selector import (
    add_selector_flags,
    build_applications,
    build_cluster_provider,
    build_config,
)

APPLICATION = """\
apiVersion: argoproj.io/v1alpha1
kind: Application
metadata:
  name: {name}
  namespace: argocd
spec:
  source:
    repoURL: https://example.com/deploy.git
  destination:
    namespace: {name}
"""


def parse(*argv: str) -> dict[str, Any]:
    parser = ArgumentParser()
    add_selector_flags(parser)
    return vars(parser.parse_args(["apps", *argv]))


def test_flags() -> None:
    """Test the defaults of the selector flags."""
    args = parse()
    assert args == {
        "path": Path("apps"),
        "app_names": None,
        "contexts": None,
        "kubeconfig": None,
        "config": None,
    }


def test_context_flags() -> None:
    """Test contexts may be bound to destination servers."""
    args = parse(
        "--context",
        "dev",
        "--context",
        "https://prod.example.com=prod,https://qa.example.com=qa",
    )
    assert args["contexts"] == {
        None: "dev",
        "https://prod.example.com": "prod",
        "https://qa.example.com": "qa",
    }

    provider = build_cluster_provider(**args)
    prod = provider(ApplicationDestination(server="https://prod.example.com"))
    assert isinstance(prod, KubectlClusterClient)
    assert prod._context == "prod"
    other = provider(ApplicationDestination())
    assert isinstance(other, KubectlClusterClient)
    assert other._context == "dev"


def test_invalid_context_flag() -> None:
    """Test a server without a context is rejected."""
    with pytest.raises(SystemExit):
        parse("--context", "https://prod.example.com=")


async def test_build_applications(tmp_path: Path) -> None:
    """Test selecting Applications by name."""
    for name in ("guestbook", "billing"):
        (tmp_path / f"{name}.yaml").write_text(APPLICATION.format(name=name))

    apps = await build_applications(tmp_path)
    assert sorted(app.name for app in apps) == ["billing", "guestbook"]

    apps = await build_applications(tmp_path, app_names=["billing"])
    assert [app.name for app in apps] == ["billing"]

    with pytest.raises(InputException, match="missing"):
        await build_applications(tmp_path, app_names=["billing", "missing"])


def test_build_config(tmp_path: Path) -> None:
    """Test reading the orchestrator configuration file."""
    assert build_config() == OrchestratorConfig()
    config_file = tmp_path / "config.yaml"
    config_file.write_text("resync_interval: 30\n")
    assert build_config(config_file).resync_interval == 30
