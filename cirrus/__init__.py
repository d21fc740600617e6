"""Cirrus - Launch and supervise a master/worker cluster on AWS.

Example:

    from cirrus import AWSProvisioningBackend, ClusterLifecycleOrchestrator, resolve_config

    config = resolve_config()
    orchestrator = ClusterLifecycleOrchestrator(
        config,
        backend=AWSProvisioningBackend(config.aws),
        coordination=my_coordination_service,
    )
    identity = orchestrator.launch()
    ...
    orchestrator.stop()
"""

# Configuration
from cirrus.config import ClusterConfig, load_config, resolve_config

# Errors
from cirrus.exceptions import (
    CirrusError,
    ConfigurationError,
    CoordinationConnectError,
    FilesystemError,
    InvalidTransition,
    LaunchAborted,
    NotificationError,
    ProvisioningFailure,
    ReadinessCancelled,
    ReadinessTimeout,
    ShutdownPartialFailure,
    ShutdownTimeout,
)

# Lifecycle
from cirrus.lifecycle import ClusterLifecycleState, LifecycleStateMachine

# Logging
from cirrus.logging import LogConfig, setup_logging, teardown_logging

# Orchestration
from cirrus.orchestrator import (
    ClusterLifecycleOrchestrator,
    NoReconnectProbe,
    ReconnectProbe,
    TaggedGroupProbe,
)

# Providers
from cirrus.providers.aws import AWS, AWSModule, AWSProvisioningBackend

# Types
from cirrus.types import (
    ClusterIdentity,
    InstanceDescriptor,
    ProvisioningPlan,
    Role,
    RoleLaunchResult,
    ShutdownReport,
)

__all__ = [
    "AWS",
    "AWSModule",
    "AWSProvisioningBackend",
    "CirrusError",
    "ClusterConfig",
    "ClusterIdentity",
    "ClusterLifecycleOrchestrator",
    "ClusterLifecycleState",
    "ConfigurationError",
    "CoordinationConnectError",
    "FilesystemError",
    "InstanceDescriptor",
    "InvalidTransition",
    "LaunchAborted",
    "LifecycleStateMachine",
    "LogConfig",
    "NoReconnectProbe",
    "NotificationError",
    "ProvisioningFailure",
    "ProvisioningPlan",
    "ReadinessCancelled",
    "ReadinessTimeout",
    "ReconnectProbe",
    "Role",
    "RoleLaunchResult",
    "ShutdownPartialFailure",
    "ShutdownReport",
    "ShutdownTimeout",
    "TaggedGroupProbe",
    "load_config",
    "resolve_config",
    "setup_logging",
    "teardown_logging",
]
