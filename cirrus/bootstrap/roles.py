"""Master and worker user-data scripts.

The master exports a shared NFS directory rooted at the cluster name; workers
mount it from the master's address, which is why workers can only be
provisioned once the master is running.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass

from cirrus.constants import (
    APP_NAME_OPTION,
    DEFAULT_LOG_ROOT_DIR,
    DEFAULT_NFS_PARENT_DIR,
    INSTANCE_NAME_OPTION,
    MASTER_MAIN_CLASS,
    STDERR,
    STDOUT,
    WORKER_MAIN_CLASS,
)
from cirrus.types import ProvisioningPlan

from .compose import bootstrap
from .ops import java, mkdir, nfs_export, nfs_mount, yum


@dataclass(frozen=True, slots=True)
class BootLayout:
    """On-instance directory layout for one cluster."""

    cluster_name: str
    nfs_parent_dir: str = DEFAULT_NFS_PARENT_DIR
    log_root_dir: str = DEFAULT_LOG_ROOT_DIR

    @property
    def app_root(self) -> str:
        return posixpath.join(self.nfs_parent_dir, self.cluster_name)

    @property
    def log_dir(self) -> str:
        return posixpath.join(self.log_root_dir, "logs")

    def work_dir(self, cluster_id: str) -> str:
        return posixpath.join(self.app_root, cluster_id)


def _simple_name(main_class: str) -> str:
    return main_class.rsplit(".", 1)[-1]


def _log_file(log_dir: str, main_class: str, stream: str) -> str:
    return posixpath.join(log_dir, f"{_simple_name(main_class)}.{stream}")


def worker_instance_name(n: int, main_class: str = WORKER_MAIN_CLASS) -> str:
    """Coordination-service participant name for the n-th worker group."""
    return f"{_simple_name(main_class)}_{n}"


def master_script(layout: BootLayout, plan: ProvisioningPlan, cluster_id: str) -> str:
    main_class = plan.main_class or MASTER_MAIN_CLASS
    return bootstrap(
        yum("nfs-utils", "nfs-utils-lib"),
        mkdir(layout.app_root),
        nfs_export(layout.app_root),
        mkdir(layout.log_dir),
        mkdir(layout.work_dir(cluster_id)),
        java(
            main_class,
            heap=plan.jvm_heap_size,
            jvm_args=plan.jvm_args,
            options={APP_NAME_OPTION: layout.cluster_name},
            stdout=_log_file(layout.log_dir, main_class, STDOUT),
            stderr=_log_file(layout.log_dir, main_class, STDERR),
        ),
    )


def worker_script(
    layout: BootLayout,
    plan: ProvisioningPlan,
    master_address: str,
    instance_name: str,
) -> str:
    main_class = plan.main_class or WORKER_MAIN_CLASS
    return bootstrap(
        nfs_mount(master_address, layout.app_root, layout.app_root),
        mkdir(layout.log_dir),
        java(
            main_class,
            heap=plan.jvm_heap_size,
            jvm_args=plan.jvm_args,
            options={
                APP_NAME_OPTION: layout.cluster_name,
                INSTANCE_NAME_OPTION: instance_name,
            },
            stdout=_log_file(layout.log_dir, main_class, STDOUT),
            stderr=_log_file(layout.log_dir, main_class, STDERR),
        ),
    )
