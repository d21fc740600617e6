"""Removal of cluster-scoped on-disk state."""

from __future__ import annotations

import shutil
from pathlib import Path

from loguru import logger

from cirrus.exceptions import FilesystemError
from cirrus.protocols import FilesystemService

log = logger.bind(component="janitor")


def app_work_dir(root: str | Path, cluster_name: str, cluster_id: str) -> Path:
    """Working directory owned by one cluster incarnation."""
    return Path(root).expanduser() / cluster_name / cluster_id


class LocalFilesystem:
    """FilesystemService over the local disk."""

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def delete_tree(self, path: Path) -> None:
        shutil.rmtree(path)


class WorkingDirectoryJanitor:
    def __init__(self, root: str | Path, filesystem: FilesystemService | None = None) -> None:
        self.root = Path(root).expanduser()
        self.filesystem = filesystem or LocalFilesystem()

    def cleanup(self, cluster_name: str, cluster_id: str) -> None:
        """Delete the cluster's working directory tree. No-op if it is absent.

        Raises:
            FilesystemError: If the tree cannot be inspected or deleted.
        """
        path = app_work_dir(self.root, cluster_name, cluster_id)
        try:
            if not self.filesystem.is_dir(path):
                log.debug("No working directory at {path}", path=path)
                return

            log.info("Deleting application working directory {path}", path=path)
            self.filesystem.delete_tree(path)
        except OSError as e:
            raise FilesystemError(str(path), e) from e
