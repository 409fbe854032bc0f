"""Core backup and restore logic."""
from __future__ import annotations

import logging
import shutil
import tarfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .commands import CommandError, CommandRunner, container_path
from .config import RunConfig
from .utils import ensure_directory, timestamp_for_filename

LOGGER = logging.getLogger(__name__)

BACKUP_PREFIX = "full-backup"
ARCHIVE_SUFFIX = ".tar.gz"


class BackupError(Exception):
    """Raised when a backup operation fails."""


class RestoreError(Exception):
    """Raised when a restore operation fails."""


@dataclass
class BackupRunner:
    config: RunConfig
    commands: Optional[CommandRunner] = None
    logger: logging.Logger = LOGGER
    archive_path: Optional[Path] = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.commands is None:
            self.commands = CommandRunner(self.config)

    # ------------------------------------------------------------------
    def backup(self, now: Optional[datetime] = None) -> Path:
        """Take a full backup and return the path of the archive on the host.

        In containerized mode the container backup directory is expected to be
        mounted at the host backup directory, so the archive shows up there.
        """

        timestamp = timestamp_for_filename(now)
        name = f"{BACKUP_PREFIX}-{timestamp}"
        backup_dir = ensure_directory(Path(self.config.backup_dir))
        self.archive_path = backup_dir / f"{name}{ARCHIVE_SUFFIX}"
        work_dir = self._work_dir()

        self.logger.info("Starting backup at %s", timestamp)
        try:
            self.commands.run(
                self.commands.mariadb_backup(container_path(work_dir, name)),
                description="mariadb-backup --backup",
            )
            self.commands.run(
                self.commands.create_archive(container_path(work_dir, f"{name}{ARCHIVE_SUFFIX}"), work_dir, name),
                description="archive backup",
            )
        except CommandError as exc:
            raise BackupError(f"Backup {name} failed: {exc}") from exc
        finally:
            self._remove_intermediate(name)

        self.logger.info("Backup completed: %s", self.archive_path)
        return self.archive_path

    # ------------------------------------------------------------------
    def restore(self, restore_file: Optional[str] = None) -> None:
        restore_file = restore_file or self.config.restore_file
        self.logger.info("Starting restore from %s", restore_file)
        if not restore_file or not Path(restore_file).is_file():
            self.logger.error("Error: Backup file %s does not exist.", restore_file)
            raise RestoreError(f"Backup file {restore_file} does not exist.")

        name = archive_top_level(Path(restore_file))
        ensure_directory(Path(self.config.backup_dir))
        work_dir = self._work_dir()
        target_dir = container_path(work_dir, name)
        try:
            self.commands.run(
                self.commands.extract_archive(restore_file, work_dir),
                description="extract archive",
            )
            self.commands.run(self.commands.mariadb_prepare(target_dir), description="mariadb-backup --prepare")
            self.commands.run(self.commands.mariadb_copy_back(target_dir), description="mariadb-backup --copy-back")
        except CommandError as exc:
            raise RestoreError(f"Restore from {restore_file} failed: {exc}") from exc
        finally:
            self._remove_intermediate(name)

        self.logger.info("Restore completed from %s", restore_file)

    # ------------------------------------------------------------------
    def _work_dir(self) -> str:
        if self.config.containerized:
            return self.config.container_backup_dir
        return str(self.config.backup_dir)

    def _remove_intermediate(self, name: str) -> None:
        if self.config.containerized:
            try:
                self.commands.run(
                    self.commands.remove_tree(container_path(self.config.container_backup_dir, name)),
                    description="remove intermediate directory",
                )
            except CommandError as exc:
                self.logger.warning("Could not remove intermediate directory %s: %s", name, exc)
            return
        path = Path(self.config.backup_dir) / name
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as exc:
            self.logger.warning("Could not remove intermediate directory %s: %s", path, exc)
        else:
            self.logger.debug("Removed intermediate directory %s.", path)


def archive_top_level(archive: Path) -> str:
    """Return the name of the directory an archive extracts into."""

    try:
        with tarfile.open(archive, "r:gz") as tar:
            member = tar.next()
    except (tarfile.TarError, OSError) as exc:
        raise RestoreError(f"Cannot read backup archive {archive}: {exc}") from exc
    if member is None:
        raise RestoreError(f"Backup archive {archive} is empty.")
    name = member.name
    while name.startswith("./"):
        name = name[2:]
    top = name.strip("/").split("/", 1)[0]
    if not top or top == "..":
        raise RestoreError(f"Backup archive {archive} has no top-level directory.")
    return top


__all__ = ["BackupRunner", "BackupError", "RestoreError", "archive_top_level"]
