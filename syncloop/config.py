"""Configuration objects for syncloop.

All intervals and timeouts are in seconds. The defaults follow the usual
behavior of a GitOps controller: the source is re-checked every 3 minutes,
a rollout gets 10 minutes before it is considered degraded, and the last 10
sync operations are retained.

A configuration file is a YAML document with the same structure, e.g.:

    resync_interval: 60
    executor:
      max_attempts: 3
    observer:
      poll_interval: 30
"""

from dataclasses import dataclass, field
from pathlib import Path

import yaml
from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig
from mashumaro.exceptions import ExtraKeysError, InvalidFieldValue, MissingField

from .exceptions import InputException

DEFAULT_RESYNC_INTERVAL = 180.0


@dataclass
class SourceControllerConfig(DataClassDictMixin):
    """Configuration for the DesiredStateFetcher."""

    cache_dir: str | None = None
    """Directory for cloned repositories, defaults to a temporary directory."""


@dataclass
class ObserverConfig(DataClassDictMixin):
    """Configuration for the LiveStateObserver."""

    poll_interval: float = DEFAULT_RESYNC_INTERVAL
    """How often the cluster is queried for live state."""

    staleness_threshold: float = 600.0
    """Age after which a snapshot that could not be refreshed is stale."""

    watch_kinds: list[str] = field(
        default_factory=lambda: [
            "Namespace",
            "ConfigMap",
            "Secret",
            "ServiceAccount",
            "PersistentVolumeClaim",
            "Service",
            "Deployment",
            "StatefulSet",
            "DaemonSet",
            "Job",
            "CronJob",
            "Ingress",
            "Role",
            "RoleBinding",
        ]
    )
    """Kinds queried for resources carrying the tracking label."""


@dataclass
class HealthConfig(DataClassDictMixin):
    """Configuration for the HealthEvaluator."""

    grace_period: float = 600.0
    """How long a resource below target is Progressing before it is Degraded."""


@dataclass
class ExecutorConfig(DataClassDictMixin):
    """Configuration for the ApplyExecutor."""

    max_attempts: int = 5
    """Attempts per resource for transient failures."""

    initial_backoff: float = 1.0
    """Delay before the first retry."""

    backoff_factor: float = 2.0
    """Multiplier applied to the delay after each retry."""

    max_backoff: float = 30.0
    """Upper bound for the delay between retries."""

    convergence_timeout: float = 10.0
    """How long to wait for an applied resource to become healthy, 0 disables."""

    convergence_poll_interval: float = 1.0
    """How often the resource is checked while waiting for convergence."""


@dataclass
class SchedulerConfig(DataClassDictMixin):
    """Configuration for the SyncScheduler."""

    history_limit: int = 10
    """Number of finished sync operations retained per application."""


@dataclass
class OrchestratorConfig(DataClassDictMixin):
    """Configuration for the orchestrator and all of its components."""

    resync_interval: float = DEFAULT_RESYNC_INTERVAL
    """How often the source revision is re-resolved for automated syncs."""

    suspend_autosync_on_degraded: bool = True
    """Stop automated syncs of an application while it is Degraded."""

    self_heal_timeout: float = 5.0
    """Seconds before an automated sync follows a sync that failed without
    resolving a revision, e.g. because the source was unreachable."""

    source: SourceControllerConfig = field(default_factory=SourceControllerConfig)
    observer: ObserverConfig = field(default_factory=ObserverConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    class Config(BaseConfig):
        forbid_extra_keys = True

    @classmethod
    def from_yaml_file(cls, path: Path) -> "OrchestratorConfig":
        """Load the configuration from a YAML file."""
        try:
            doc = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as err:
            raise InputException(f"Unable to read config file {path}: {err}") from err
        if not isinstance(doc, dict):
            raise InputException(f"Invalid config file {path}: expected a mapping")
        try:
            return cls.from_dict(doc)
        except (ExtraKeysError, InvalidFieldValue, MissingField, ValueError) as err:
            raise InputException(f"Invalid config file {path}: {err}") from err
