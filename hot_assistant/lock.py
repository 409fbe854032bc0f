"""Single-instance guard built on a lock marker and a PID marker.

Every inspection and change of the markers happens while holding an exclusive
``flock`` on a guard file next to the lock marker, so reading the holder,
evicting it and installing a new lock is one step as far as other runs going
through this guard are concerned. The lock marker itself is published with
``os.link`` from a temporary file that already holds the PID, so it is never
visible without its owner.

A marker pair left behind by a dead process is reclaimed automatically; a live
holder is either reported or, with ``force``, killed.

Usage::

    with ConcurrencyGuard(config.lock_file, config.pid_file, force=config.force):
        ...
"""
from __future__ import annotations

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import psutil

LOGGER = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when the single-instance lock cannot be acquired."""


class LockHeldError(LockError):
    """Raised when another live instance holds the lock and force is off."""

    def __init__(self, pid: int):
        super().__init__(f"Another instance is running (PID: {pid}). Use --force to terminate it.")
        self.pid = pid


class ConcurrencyGuard:
    def __init__(
        self,
        lock_file: Path,
        pid_file: Path,
        *,
        force: bool = False,
        kill_timeout: float = 10.0,
        wait_timeout: float = 30.0,
        max_attempts: int = 3,
        logger: logging.Logger = LOGGER,
    ):
        self.lock_file = Path(lock_file)
        self.pid_file = Path(pid_file)
        # Never deleted: removing a flock'ed file lets two runs lock different inodes.
        self.guard_file = self.lock_file.with_name(self.lock_file.name + ".guard")
        self.force = force
        self.kill_timeout = kill_timeout
        self.wait_timeout = wait_timeout
        self.max_attempts = max_attempts
        self.logger = logger
        self.pid = os.getpid()
        self.acquired = False

    def acquire(self) -> None:
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        with self._exclusive():
            for _ in range(self.max_attempts):
                if self._publish_lock():
                    _write_atomically(self.pid_file, f"{self.pid}\n")
                    self.acquired = True
                    self.logger.debug("Acquired lock %s for PID %s.", self.lock_file, self.pid)
                    return
                self._evict_holder()
        raise LockError(f"Could not acquire {self.lock_file} after {self.max_attempts} attempts.")

    def release(self) -> None:
        """Remove both markers if this process still owns them. Safe to call twice."""

        if not self.acquired:
            return
        self.acquired = False
        try:
            with self._exclusive():
                if self.read_holder() != self.pid:
                    self.logger.warning(
                        "Lock %s is no longer owned by PID %s; leaving it in place.", self.lock_file, self.pid
                    )
                    return
                self._remove_markers()
        except LockError as exc:
            self.logger.warning("Could not release %s: %s", self.lock_file, exc)
            return
        self.logger.debug("Released lock %s.", self.lock_file)

    def read_holder(self) -> Optional[int]:
        """Return the PID recorded in the markers, or ``None`` when unreadable.

        The lock marker is authoritative; the PID marker is only consulted when
        the lock marker carries no PID.
        """

        for marker in (self.lock_file, self.pid_file):
            pid = _read_pid(marker)
            if pid is not None:
                return pid
        return None

    # ------------------------------------------------------------------
    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        fd = os.open(str(self.guard_file), os.O_CREAT | os.O_RDWR, 0o644)
        try:
            deadline = time.monotonic() + self.wait_timeout
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise LockError(
                            f"Another instance is busy with {self.lock_file}; gave up after {self.wait_timeout} seconds."
                        )
                    time.sleep(0.05)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _publish_lock(self) -> bool:
        staging = self.lock_file.with_name(f".{self.lock_file.name}.{self.pid}")
        staging.write_text(f"{self.pid}\n", encoding="utf-8")
        try:
            os.link(staging, self.lock_file)
        except FileExistsError:
            return False
        finally:
            staging.unlink(missing_ok=True)
        return True

    def _evict_holder(self) -> None:
        holder = self.read_holder()
        if holder is None or holder == self.pid or not is_process_alive(holder):
            self.logger.info("Removing stale lock %s (PID: %s).", self.lock_file, holder)
            self._remove_markers()
            return
        if not self.force:
            raise LockHeldError(holder)
        self.logger.warning("Force enabled: Terminating previous process with PID %s.", holder)
        self._kill(holder)
        self._remove_markers()

    def _kill(self, pid: int) -> None:
        try:
            process = psutil.Process(pid)
            process.kill()
            process.wait(timeout=self.kill_timeout)
        except psutil.NoSuchProcess:
            return
        except psutil.TimeoutExpired as exc:
            raise LockError(f"Process {pid} did not exit within {self.kill_timeout} seconds.") from exc
        except psutil.AccessDenied as exc:
            raise LockError(f"Not allowed to terminate process {pid}.") from exc

    def _remove_markers(self) -> None:
        self.lock_file.unlink(missing_ok=True)
        self.pid_file.unlink(missing_ok=True)

    def __enter__(self) -> "ConcurrencyGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def _read_pid(marker: Path) -> Optional[int]:
    try:
        content = marker.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not content:
        return None
    try:
        return int(content.splitlines()[0])
    except ValueError:
        return None


def _write_atomically(path: Path, content: str) -> None:
    staging = path.with_name(f".{path.name}.{os.getpid()}")
    staging.write_text(content, encoding="utf-8")
    os.replace(staging, path)


def is_process_alive(pid: int) -> bool:
    """Return ``True`` when *pid* names a running process. Zombies count as dead."""

    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, ValueError):
        return False
    except psutil.AccessDenied:
        return True


__all__ = ["ConcurrencyGuard", "LockError", "LockHeldError", "is_process_alive"]
