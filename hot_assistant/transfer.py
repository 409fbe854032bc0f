"""Copy of backup archives to a remote host."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .commands import CommandError, CommandRunner
from .config import RunConfig

LOGGER = logging.getLogger(__name__)


class TransferError(Exception):
    """Raised when copying an archive to the remote host fails."""


@dataclass
class RemoteTransfer:
    """Push a single archive to ``user@host:path`` with scp."""

    config: RunConfig
    commands: Optional[CommandRunner] = None
    logger: logging.Logger = LOGGER

    def __post_init__(self) -> None:
        if self.commands is None:
            self.commands = CommandRunner(self.config)

    def transfer(self, archive_path: Path) -> bool:
        """Return ``True`` when a copy was attempted, ``False`` when skipped."""

        remote = self.config.remote
        if not remote:
            self.logger.info("Remote server not configured. Skipping transfer.")
            return False
        self.logger.info("Transferring backup to remote server...")
        try:
            self.commands.run([self.config.scp_binary, str(archive_path), remote], description="scp", local=True)
        except CommandError as exc:
            raise TransferError(f"Transfer of {archive_path} to {remote} failed: {exc}") from exc
        self.logger.info("Backup transferred to %s", remote)
        return True


__all__ = ["RemoteTransfer", "TransferError"]
