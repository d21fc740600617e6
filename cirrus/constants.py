"""Centralized constants and enums for cirrus.

Tag keys, instance states, boot-script paths and default timeouts live here
so the orchestrator, the boot scripts and the AWS backend agree on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# AWS Resource Tags
# =============================================================================


class CirrusTag(StrEnum):
    """AWS resource tag keys used by cirrus."""

    MANAGED = "cirrus:managed"
    CLUSTER_NAME = "cirrus:cluster-name"
    MASTER = "cirrus:master"
    WORKER = "cirrus:worker"


# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    RUNNING = "running"
    STOPPED = "stopped"
    PENDING = "pending"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    SHUTTING_DOWN = "shutting-down"


# =============================================================================
# Resource Naming
# =============================================================================

RESOURCE_PREFIX: Final = "cirrus"
ASG_GROUP_NAME_TAG: Final = "aws:autoscaling:groupName"

# =============================================================================
# Boot Scripts
# =============================================================================

DEFAULT_NFS_PARENT_DIR: Final = "/home/ec2-user"
DEFAULT_LOG_ROOT_DIR: Final = "/var/log/cirrus"
NFS_EXPORT_OPTIONS: Final = "rw,sync,no_subtree_check,fsid=1,no_root_squash"
NFS_EXPORT_HOSTS: Final = "*"
NFS_MOUNT_TYPE: Final = "nfs4"

MASTER_MAIN_CLASS: Final = "cirrus.cluster.ClusterMaster"
WORKER_MAIN_CLASS: Final = "cirrus.cluster.TaskRunner"
APP_NAME_OPTION: Final = "app_name"
INSTANCE_NAME_OPTION: Final = "helix_instance_name"

STDOUT: Final = "stdout"
STDERR: Final = "stderr"

# =============================================================================
# Timeouts (in seconds)
# =============================================================================

READINESS_INTERVAL: Final = 5.0
READINESS_TIMEOUT: Final = 600.0
HALT_TIMEOUT: Final = 300.0
CREDENTIAL_REFRESH_INTERVAL: Final = 900.0

# =============================================================================
# Local Filesystem
# =============================================================================

DEFAULT_WORK_DIR_ROOT: Final = "~/.cirrus/clusters"
