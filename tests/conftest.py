"""Shared fixtures: fake external tools on PATH and throwaway processes."""

import os
import stat
import subprocess
import sys
from pathlib import Path

import pytest

# Root-level CLI module
sys.path.insert(0, str(Path(__file__).parent.parent))

from hot_assistant.config import RunConfig

FAKE_MARIADB_BACKUP = """#!/bin/sh
echo "mariadb-backup $*" >> "$FAKE_CALLS"
target=""
for arg in "$@"; do
  case "$arg" in
    --target-dir=*) target="${arg#--target-dir=}" ;;
  esac
done
case "$1" in
  --backup)
    mkdir -p "$target" && echo "ibdata" > "$target/ibdata1"
    echo "[00] completed OK!"
    ;;
  --prepare|--copy-back)
    if [ ! -d "$target" ]; then
      echo "missing $target" >&2
      exit 1
    fi
    echo "$1 completed OK!"
    ;;
esac
exit ${FAKE_MARIADB_EXIT:-0}
"""

FAKE_SCP = """#!/bin/sh
echo "scp $*" >> "$FAKE_CALLS"
exit ${FAKE_SCP_EXIT:-0}
"""

# docker exec NAME bash -c CMD: run CMD on the host.
FAKE_DOCKER = """#!/bin/sh
echo "docker $*" >> "$FAKE_CALLS"
shift 4
exec sh -c "$1"
"""


def _write_script(path: Path, body: str) -> None:
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture
def fake_tools(tmp_path, monkeypatch):
    """Put fake mariadb-backup, scp and docker first on PATH.

    Returns the file every fake appends its command line to.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _write_script(bin_dir / "mariadb-backup", FAKE_MARIADB_BACKUP)
    _write_script(bin_dir / "scp", FAKE_SCP)
    _write_script(bin_dir / "docker", FAKE_DOCKER)
    calls = tmp_path / "calls.log"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_CALLS", str(calls))
    monkeypatch.delenv("FAKE_MARIADB_EXIT", raising=False)
    monkeypatch.delenv("FAKE_SCP_EXIT", raising=False)
    return calls


@pytest.fixture
def run_config(tmp_path):
    """Factory for a RunConfig rooted in the test's temporary directory."""

    def _make(**overrides) -> RunConfig:
        values = {
            "backup_dir": str(tmp_path / "backups"),
            "log_dir": str(tmp_path / "logs"),
            "lock_dir": str(tmp_path / "lock"),
        }
        values.update(overrides)
        return RunConfig(**values)

    return _make


@pytest.fixture
def sleeper():
    """A live process that is neither us nor our parent."""
    process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        yield process
    finally:
        if process.poll() is None:
            process.kill()
        process.wait()


@pytest.fixture
def dead_pid():
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    return process.pid
