"""Declarative user-data scripts for cluster instances."""

from cirrus.bootstrap.compose import Op, bootstrap, resolve
from cirrus.bootstrap.ops import java, mkdir, nfs_export, nfs_mount, yum
from cirrus.bootstrap.roles import BootLayout, master_script, worker_instance_name, worker_script

__all__ = [
    "Op",
    "bootstrap",
    "resolve",
    "java",
    "mkdir",
    "nfs_export",
    "nfs_mount",
    "yum",
    "BootLayout",
    "master_script",
    "worker_script",
    "worker_instance_name",
]
