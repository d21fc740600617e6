"""Collaborator contracts the orchestrator depends on.

Each call is treated as a single blocking round trip. Retry and idempotency
belong to the implementation, not to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from cirrus.types import (
    GroupDescriptor,
    InstanceDescriptor,
    KeyPair,
    SecurityGroup,
    ShutdownCriteria,
    ShutdownSignal,
)

__all__ = [
    "CloudProvisioningBackend",
    "CoordinationService",
    "NotificationService",
    "FilesystemService",
]


@runtime_checkable
class CloudProvisioningBackend(Protocol):
    """Cloud API used to create the cluster's resources."""

    def create_security_group(self, name: str, description: str) -> SecurityGroup: ...

    def add_ingress_rule(
        self,
        group: SecurityGroup,
        cidr: str,
        protocol: str,
        from_port: int,
        to_port: int,
    ) -> None: ...

    def create_key_pair(self, name: str) -> KeyPair: ...

    def create_launch_template(
        self,
        name: str,
        *,
        ami_id: str,
        instance_type: str,
        key_name: str,
        security_group: SecurityGroup,
        user_data: str,
    ) -> str: ...

    def create_autoscaling_group(
        self,
        name: str,
        *,
        launch_template: str,
        min_size: int,
        max_size: int,
        desired_capacity: int,
        tags: Mapping[str, str],
    ) -> None: ...

    def list_instances(self, group_name: str, state: str | None = None) -> Sequence[InstanceDescriptor]: ...

    def find_groups(self, tags: Mapping[str, str]) -> Sequence[GroupDescriptor]: ...


@runtime_checkable
class CoordinationService(Protocol):
    """Cluster membership and control messaging (e.g. a Helix manager)."""

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def send(self, criteria: ShutdownCriteria, message: ShutdownSignal) -> int:
        """Send ``message`` to every match of ``criteria``; return the recipient count."""
        ...


@runtime_checkable
class NotificationService(Protocol):
    def send_email(self, subject: str, body: str) -> None: ...


@runtime_checkable
class FilesystemService(Protocol):
    def is_dir(self, path: Path) -> bool: ...

    def delete_tree(self, path: Path) -> None: ...
