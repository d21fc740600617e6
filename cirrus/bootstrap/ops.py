"""Boot-script operations.

Declarative operations for instance setup: packages, directories, the
shared NFS export and the JVM launch line. Each operation returns an Op.
"""

from __future__ import annotations

import shlex

from cirrus.constants import NFS_EXPORT_HOSTS, NFS_EXPORT_OPTIONS, NFS_MOUNT_TYPE

from .compose import Op

# =============================================================================
# Package Operations
# =============================================================================


def yum(*packages: str) -> Op:
    """Install packages with yum.

    Example:
        >>> yum("nfs-utils")()
        'sudo yum install -y nfs-utils'
    """
    if not packages:
        return lambda: "# No yum packages to install"

    pkg_list = " ".join(packages)
    return lambda: f"sudo yum install -y {pkg_list}"


# =============================================================================
# File Operations
# =============================================================================


def mkdir(path: str, parents: bool = True) -> Op:
    """Create directory.

    Example:
        >>> mkdir("/opt/mydir")()
        'mkdir -p /opt/mydir'
    """
    flags = "-p " if parents else ""
    return lambda: f"mkdir {flags}{path}"


# =============================================================================
# NFS Operations
# =============================================================================


def nfs_export(
    path: str,
    hosts: str = NFS_EXPORT_HOSTS,
    options: str = NFS_EXPORT_OPTIONS,
) -> Op:
    """Export ``path`` over NFS and (re)start the server."""

    def generate() -> str:
        return "\n".join([
            f"echo '{path} {hosts}({options})' | sudo tee --append /etc/exports",
            "sudo /etc/init.d/nfs start",
            "sudo exportfs -a",
        ])

    return generate


def nfs_mount(server: str, remote_path: str, local_path: str, fs_type: str = NFS_MOUNT_TYPE) -> Op:
    """Mount ``server:remote_path`` on ``local_path``.

    Example:
        >>> nfs_mount("10.0.0.1", "/home/ec2-user/c", "/home/ec2-user/c")()
        'mkdir -p /home/ec2-user/c\\nsudo mount -t nfs4 10.0.0.1:/home/ec2-user/c /home/ec2-user/c'
    """
    return lambda: "\n".join([
        f"mkdir -p {local_path}",
        f"sudo mount -t {fs_type} {server}:{remote_path} {local_path}",
    ])


# =============================================================================
# Process Operations
# =============================================================================


def java(
    main_class: str,
    *,
    heap: str,
    jvm_args: str | None = None,
    options: dict[str, str] | None = None,
    stdout: str | None = None,
    stderr: str | None = None,
) -> Op:
    """Launch a JVM main class with ``--key value`` program options.

    Example:
        >>> java("a.Main", heap="1g", options={"app_name": "c"})()
        'java -Xmx1g a.Main --app_name c'
    """

    def generate() -> str:
        parts = ["java", f"-Xmx{heap}"]
        if jvm_args:
            parts.append(jvm_args)
        parts.append(main_class)
        for key, value in (options or {}).items():
            parts.append(f"--{key} {shlex.quote(value)}")
        if stdout:
            parts.append(f"1>{stdout}")
        if stderr:
            parts.append(f"2>{stderr}")
        return " ".join(parts)

    return generate
