"""TOML-based launcher configuration.

Loads ~/.cirrus/defaults.toml (global) and cirrus.toml (project), merges
them, and builds an immutable ClusterConfig. A single explicit file can be
given instead.

Example cirrus.toml::

    [cluster]
    name = "ingest"

    [master]
    ami_id = "ami-0abc"
    instance_type = "m5.large"
    jvm_heap_size = "4g"

    [worker]
    ami_id = "ami-0abc"
    instance_type = "m5.xlarge"
    jvm_heap_size = "8g"
    min_count = 2
    max_count = 5
    desired_count = 3

    [coordination]
    factory = "mycompany.helix:connect"
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cirrus.constants import (
    DEFAULT_LOG_ROOT_DIR,
    DEFAULT_NFS_PARENT_DIR,
    DEFAULT_WORK_DIR_ROOT,
    HALT_TIMEOUT,
    READINESS_INTERVAL,
    READINESS_TIMEOUT,
    RESOURCE_PREFIX,
)
from cirrus.exceptions import ConfigurationError
from cirrus.logging import LogConfig
from cirrus.providers.aws.config import AWS
from cirrus.types import ProvisioningPlan

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".cirrus" / "defaults.toml"
PROJECT_CONFIG_NAME = "cirrus.toml"

_MASTER_COUNT_KEYS = ("min_count", "max_count", "desired_count")

_NUMBER = (int, float)
_COUNTS = {"min_count": (int,), "max_count": (int,), "desired_count": (int,)}

# Expected TOML value types per key. bool never satisfies a numeric key.
_VALUE_TYPES: dict[str, dict[str, tuple[type, ...]]] = {
    "cluster": {"reconnect": (bool,), "halt_timeout": _NUMBER},
    "master": _COUNTS,
    "worker": _COUNTS,
    "readiness": {"interval": _NUMBER, "timeout": _NUMBER},
    "aws": {
        "ingress_from_port": (int,),
        "ingress_to_port": (int,),
        "credential_refresh_interval": _NUMBER,
    },
    "notifications": {"email_on_shutdown": (bool,), "smtp_port": (int,), "use_tls": (bool,)},
    "logging": {"console": (bool,), "retention": (int,)},
}


@dataclass(frozen=True, slots=True)
class ClusterSettings:
    name: str
    work_dir_root: str = DEFAULT_WORK_DIR_ROOT
    nfs_parent_dir: str = DEFAULT_NFS_PARENT_DIR
    log_root_dir: str = DEFAULT_LOG_ROOT_DIR
    reconnect: bool = False
    halt_timeout: float = HALT_TIMEOUT
    prefix: str = RESOURCE_PREFIX

    def __post_init__(self) -> None:
        if self.halt_timeout <= 0:
            raise ValueError(f"halt_timeout must be positive, got {self.halt_timeout}")


@dataclass(frozen=True, slots=True)
class ReadinessSettings:
    interval: float = READINESS_INTERVAL
    timeout: float = READINESS_TIMEOUT

    def __post_init__(self) -> None:
        if self.interval <= 0 or self.timeout <= 0:
            raise ValueError("readiness interval and timeout must be positive")


@dataclass(frozen=True, slots=True)
class CoordinationSettings:
    """``factory`` is an import path ``"module:callable"`` returning a CoordinationService."""

    factory: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    email_on_shutdown: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 25
    sender: str | None = None
    recipients: tuple[str, ...] = ()
    use_tls: bool = False
    username: str | None = None
    password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not 0 < self.smtp_port < 65536:
            raise ValueError(f"smtp_port must be in 1-65535, got {self.smtp_port}")


@dataclass(frozen=True, slots=True)
class ClusterConfig:
    cluster: ClusterSettings
    master: ProvisioningPlan
    worker: ProvisioningPlan
    readiness: ReadinessSettings = field(default_factory=ReadinessSettings)
    aws: AWS = field(default_factory=AWS)
    coordination: CoordinationSettings = field(default_factory=CoordinationSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    logging: LogConfig = field(default_factory=LogConfig)


# =============================================================================
# Loading
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)
    return _deep_merge(global_cfg, project_cfg)


# =============================================================================
# Building
# =============================================================================


def _section(raw: RawConfig, name: str, *, required: bool = False) -> RawConfig:
    value = raw.get(name)
    if value is None:
        if required:
            raise ConfigurationError(f"Missing required [{name}] section")
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    return dict(value)


def _check_types(section: str, values: RawConfig) -> None:
    for key, kinds in _VALUE_TYPES.get(section, {}).items():
        if key not in values:
            continue
        value = values[key]
        if not isinstance(value, kinds) or (isinstance(value, bool) and bool not in kinds):
            expected = " or ".join(k.__name__ for k in kinds)
            raise ConfigurationError(f"[{section}] {key} must be {expected}, got {value!r}")


def _build[T](cls: type[T], section: str, values: RawConfig) -> T:
    _check_types(section, values)
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [{section}] settings: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Invalid [{section}] settings: {e}") from e


def _build_master(values: RawConfig) -> ProvisioningPlan:
    fixed = [k for k in _MASTER_COUNT_KEYS if k in values]
    if fixed:
        raise ConfigurationError(
            f"[master] group size is fixed at one instance; remove {', '.join(fixed)}"
        )
    return _build(ProvisioningPlan, "master", values)


def _build_worker(values: RawConfig) -> ProvisioningPlan:
    missing = [k for k in _MASTER_COUNT_KEYS if k not in values]
    if missing:
        raise ConfigurationError(f"[worker] missing required keys: {', '.join(missing)}")
    return _build(ProvisioningPlan, "worker", values)


def build_config(raw: RawConfig) -> ClusterConfig:
    """Validate a merged raw mapping into a ClusterConfig.

    Raises:
        ConfigurationError: On missing sections, unknown keys or invalid values.
    """
    aws = _section(raw, "aws")
    if "subnet_ids" in aws:
        aws["subnet_ids"] = tuple(aws["subnet_ids"])

    notifications = _section(raw, "notifications")
    if "recipients" in notifications:
        notifications["recipients"] = tuple(notifications["recipients"])

    config = ClusterConfig(
        cluster=_build(ClusterSettings, "cluster", _section(raw, "cluster", required=True)),
        master=_build_master(_section(raw, "master", required=True)),
        worker=_build_worker(_section(raw, "worker", required=True)),
        readiness=_build(ReadinessSettings, "readiness", _section(raw, "readiness")),
        aws=_build(AWS, "aws", aws),
        coordination=_build(CoordinationSettings, "coordination", _section(raw, "coordination")),
        notifications=_build(NotificationSettings, "notifications", notifications),
        logging=_build(LogConfig, "logging", _section(raw, "logging")),
    )

    if config.notifications.email_on_shutdown and not config.notifications.recipients:
        raise ConfigurationError("[notifications] email_on_shutdown requires recipients")
    return config


def resolve_config(
    path: Path | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ClusterConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file. When given, global and project files are ignored.
        project_dir: Directory holding cirrus.toml. Defaults to the cwd.
        global_path: Global defaults file. Defaults to ~/.cirrus/defaults.toml.
    """
    if path is not None:
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {path}")
        raw = _read_toml(path)
    else:
        raw = load_config(project_dir=project_dir, global_path=global_path)
    return build_config(raw)
