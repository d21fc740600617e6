"""Value types shared by the orchestrator, sequencer and shutdown path."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from cirrus.constants import InstanceState

__all__ = [
    "Role",
    "ClusterIdentity",
    "ProvisioningPlan",
    "InstanceDescriptor",
    "RoleLaunchResult",
    "KeyPair",
    "SecurityGroup",
    "GroupDescriptor",
    "MessageKind",
    "ShutdownCriteria",
    "ShutdownSignal",
    "StepFailure",
    "ShutdownReport",
]


class Role(StrEnum):
    """Logical group of cluster instances sharing a boot script."""

    MASTER = "master"
    WORKER = "worker"


@dataclass(frozen=True, slots=True)
class ClusterIdentity:
    """Cluster name plus the id assigned once the master is confirmed running.

    ``name`` is stable across launcher restarts. ``id`` is the reconnect key.
    """

    name: str
    id: str | None = None

    @property
    def is_assigned(self) -> bool:
        return self.id is not None


@dataclass(frozen=True, slots=True)
class ProvisioningPlan:
    """Immutable per-role launch parameters.

    Example:
        >>> ProvisioningPlan(ami_id="ami-123", instance_type="m5.large",
        ...                  jvm_heap_size="4g", min_count=2, max_count=5, desired_count=3)
    """

    ami_id: str
    instance_type: str
    jvm_heap_size: str
    jvm_args: str | None = None
    min_count: int = 1
    max_count: int = 1
    desired_count: int = 1
    main_class: str | None = None

    def __post_init__(self) -> None:
        if self.min_count < 0:
            raise ValueError(f"min_count must be >= 0, got {self.min_count}")
        if not self.min_count <= self.desired_count <= self.max_count:
            raise ValueError(
                "counts must satisfy min_count <= desired_count <= max_count, got "
                f"{self.min_count}/{self.desired_count}/{self.max_count}"
            )


@dataclass(frozen=True, slots=True)
class InstanceDescriptor:
    id: str
    public_address: str | None
    state: str

    @property
    def is_running(self) -> bool:
        return self.state == InstanceState.RUNNING


@dataclass(frozen=True, slots=True)
class RoleLaunchResult:
    """Names of the resources created for one role and the instances seen so far."""

    launch_template_name: str
    autoscaling_group_name: str
    instances: tuple[InstanceDescriptor, ...] = ()


@dataclass(frozen=True, slots=True)
class KeyPair:
    name: str
    material: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class SecurityGroup:
    name: str
    id: str


@dataclass(frozen=True, slots=True)
class GroupDescriptor:
    """An autoscaling group as returned by tag queries."""

    name: str
    tags: Mapping[str, str] = field(default_factory=dict)


# =============================================================================
# Shutdown
# =============================================================================


class MessageKind(StrEnum):
    SHUTDOWN = "SHUTDOWN"


@dataclass(frozen=True, slots=True)
class ShutdownCriteria:
    """Recipient selection for a broadcast through the coordination service.

    ``%`` is the wildcard for instance, resource, partition and partition state.
    """

    instance_name: str = "%"
    resource: str = "%"
    partition: str = "%"
    partition_state: str = "%"
    recipient_role: str = "CONTROLLER"
    session_specific: bool = True


@dataclass(frozen=True, slots=True)
class ShutdownSignal:
    """Fan-out stop request addressed to the cluster controller."""

    correlation_id: str
    target_scope: str = "*"
    kind: MessageKind = MessageKind.SHUTDOWN
    subtype: str = "APPLICATION_MASTER_SHUTDOWN"

    @classmethod
    def create(cls) -> ShutdownSignal:
        return cls(correlation_id=f"application_master_shutdown{uuid.uuid4()}")


@dataclass(frozen=True, slots=True)
class StepFailure:
    step: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.step}: {type(self.error).__name__}: {self.error}"


@dataclass(slots=True)
class ShutdownReport:
    """Outcome of each shutdown step, accumulated rather than short-circuited."""

    signal_recipients: int | None = None
    services_stopped: bool = False
    disconnected: bool = False
    cleaned_up: bool = False
    failures: list[StepFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def record(self, step: str, error: BaseException) -> None:
        self.failures.append(StepFailure(step, error))

    def summary(self) -> str:
        if self.ok:
            return "All shutdown steps completed."
        return "Failed shutdown steps: " + "; ".join(str(f) for f in self.failures)
