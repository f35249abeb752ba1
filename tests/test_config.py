"""Tests for the configuration objects."""

from pathlib import Path

import pytest

from syncloop.config import OrchestratorConfig
from syncloop.exceptions import InputException


def test_defaults() -> None:
    """Test the default configuration."""
    config = OrchestratorConfig()
    assert config.resync_interval == 180
    assert config.observer.poll_interval == 180
    assert config.health.grace_period == 600
    assert config.executor.max_attempts == 5
    assert config.scheduler.history_limit == 10
    assert config.suspend_autosync_on_degraded
    assert config.self_heal_timeout == 5.0
    assert "Deployment" in config.observer.watch_kinds


def test_from_yaml_file(tmp_path: Path) -> None:
    """Test loading a partial configuration file."""
    path = tmp_path / "syncloop.yaml"
    path.write_text(
        "resync_interval: 60\n"
        "executor:\n"
        "  max_attempts: 3\n"
        "observer:\n"
        "  poll_interval: 30\n"
        "  watch_kinds: [ConfigMap]\n"
    )
    config = OrchestratorConfig.from_yaml_file(path)
    assert config.resync_interval == 60
    assert config.executor.max_attempts == 3
    assert config.executor.initial_backoff == 1.0
    assert config.observer.poll_interval == 30
    assert config.observer.watch_kinds == ["ConfigMap"]
    assert config.health.grace_period == 600


def test_empty_file(tmp_path: Path) -> None:
    """Test an empty file uses the defaults."""
    path = tmp_path / "syncloop.yaml"
    path.write_text("")
    assert OrchestratorConfig.from_yaml_file(path) == OrchestratorConfig()


@pytest.mark.parametrize(
    "content",
    [
        "unknown_option: 1\n",
        "- a\n- b\n",
        "resync_interval: [\n",
    ],
)
def test_invalid_file(tmp_path: Path, content: str) -> None:
    """Test invalid configuration files."""
    path = tmp_path / "syncloop.yaml"
    path.write_text(content)
    with pytest.raises(InputException, match="config file"):
        OrchestratorConfig.from_yaml_file(path)


def test_missing_file(tmp_path: Path) -> None:
    """Test a configuration file that does not exist."""
    with pytest.raises(InputException, match="Unable to read"):
        OrchestratorConfig.from_yaml_file(tmp_path / "missing.yaml")
