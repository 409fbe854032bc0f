"""Invocation of the external tools the assistant delegates to."""
from __future__ import annotations

import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional, Sequence

from .config import RunConfig
from .utils import mask_sensitive

LOGGER = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external command fails."""

    def __init__(self, message: str, command: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.command = command
        self.returncode = returncode


class CommandTimeoutError(CommandError):
    """Raised when an external command exceeds ``command_timeout``."""


@dataclass
class CommandRunner:
    config: RunConfig
    logger: logging.Logger = LOGGER

    # ------------------------------------------------------------------
    def mariadb_backup(self, target_dir: str) -> List[str]:
        command = [self.config.mariadb_backup_binary, "--backup", f"--target-dir={target_dir}"]
        # Inside the container the tool reads the server's own defaults.
        if not self.config.containerized:
            command += [
                f"--host={self.config.host}",
                f"--port={self.config.port}",
                f"--user={self.config.user}",
            ]
            if self.config.password:
                command.append(f"--password={self.config.password}")
        return command

    def mariadb_prepare(self, target_dir: str) -> List[str]:
        return [self.config.mariadb_backup_binary, "--prepare", f"--target-dir={target_dir}"]

    def mariadb_copy_back(self, target_dir: str) -> List[str]:
        return [self.config.mariadb_backup_binary, "--copy-back", f"--target-dir={target_dir}"]

    def create_archive(self, archive: str, parent: str, name: str) -> List[str]:
        return [self.config.tar_binary, "czvf", archive, "-C", parent, name]

    def extract_archive(self, archive: str, destination: str) -> List[str]:
        return [self.config.tar_binary, "xzvf", archive, "-C", destination]

    def remove_tree(self, path: str) -> List[str]:
        return ["rm", "-rf", path]

    # ------------------------------------------------------------------
    def wrap(self, command: Sequence[str]) -> List[str]:
        """Route *command* through ``docker exec`` in containerized mode."""

        if not self.config.containerized:
            return list(command)
        return [
            self.config.docker_binary,
            "exec",
            self.config.container_name,
            "bash",
            "-c",
            shlex.join(command),
        ]

    def run(self, command: Sequence[str], *, description: Optional[str] = None, local: bool = False) -> int:
        """Run *command*, streaming its output to the log, and return the exit code.

        ``local`` skips the container wrapping for commands that always run on
        the host (the remote copy, for instance). A non-zero exit code raises
        :class:`CommandError` unless ``ignore_tool_failures`` is set.
        """

        argv = list(command) if local else self.wrap(command)
        display = self._mask(shlex.join(argv))
        desc = f" ({description})" if description else ""
        self.logger.info("Running command%s: %s", desc, display)

        timeout = self.config.command_timeout
        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            return self._fail(f"Cannot start '{argv[0]}': {exc}", display, None)

        timed_out = threading.Event()

        def _on_timeout() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(timeout, _on_timeout) if timeout else None
        if timer:
            timer.start()
        try:
            for line in process.stdout:
                self.logger.info("%s", self._mask(line.rstrip("\n")))
            returncode = process.wait()
        finally:
            if timer:
                timer.cancel()
            if process.stdout:
                process.stdout.close()

        if timed_out.is_set():
            return self._fail(
                f"Command '{display}' exceeded the timeout of {timeout} seconds.",
                display,
                returncode,
                timeout=True,
            )
        if returncode != 0:
            return self._fail(f"Command '{display}' exited with code {returncode}.", display, returncode)
        return returncode

    # ------------------------------------------------------------------
    def _fail(self, message: str, display: str, returncode: Optional[int], timeout: bool = False) -> int:
        if self.config.ignore_tool_failures:
            self.logger.warning("%s Continuing because ignore_tool_failures is set.", message)
            return returncode if returncode is not None else -1
        error_class = CommandTimeoutError if timeout else CommandError
        raise error_class(message, command=display, returncode=returncode)

    def _mask(self, text: str) -> str:
        return mask_sensitive(text, [self.config.password])


def container_path(*parts: str) -> str:
    return str(PurePosixPath(*parts))


__all__ = ["CommandError", "CommandRunner", "CommandTimeoutError", "container_path"]
