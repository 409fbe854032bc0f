"""
Tests for hot_assistant.commands

Tests cover:
- Command construction for host and container execution
- Output streaming into the log with password masking
- Exit code checking, parity mode and timeouts
"""

import logging
import shlex
import sys

import pytest

from hot_assistant.commands import CommandError, CommandRunner, CommandTimeoutError
from hot_assistant.config import RunConfig


class TestBuilders:
    """Argument vectors for the delegated tools."""

    def test_backup_on_host_passes_connection(self):
        runner = CommandRunner(RunConfig(host="db", port=3307, user="backup", password="s3cret"))

        assert runner.mariadb_backup("/b/full-backup-x") == [
            "mariadb-backup",
            "--backup",
            "--target-dir=/b/full-backup-x",
            "--host=db",
            "--port=3307",
            "--user=backup",
            "--password=s3cret",
        ]

    def test_empty_password_is_omitted(self):
        runner = CommandRunner(RunConfig(password=""))

        assert not any(arg.startswith("--password") for arg in runner.mariadb_backup("/b/x"))

    def test_backup_in_container_has_no_connection_flags(self):
        runner = CommandRunner(RunConfig(containerized=True, password="s3cret"))

        assert runner.mariadb_backup("/c/x") == ["mariadb-backup", "--backup", "--target-dir=/c/x"]

    def test_restore_steps(self):
        runner = CommandRunner(RunConfig())

        assert runner.mariadb_prepare("/b/x") == ["mariadb-backup", "--prepare", "--target-dir=/b/x"]
        assert runner.mariadb_copy_back("/b/x") == ["mariadb-backup", "--copy-back", "--target-dir=/b/x"]

    def test_archive_commands(self):
        runner = CommandRunner(RunConfig(tar_binary="gtar"))

        assert runner.create_archive("/b/x.tar.gz", "/b", "x") == ["gtar", "czvf", "/b/x.tar.gz", "-C", "/b", "x"]
        assert runner.extract_archive("/in/x.tar.gz", "/b") == ["gtar", "xzvf", "/in/x.tar.gz", "-C", "/b"]

    def test_wrap_on_host_is_identity(self):
        runner = CommandRunner(RunConfig())

        assert runner.wrap(["tar", "czvf", "a"]) == ["tar", "czvf", "a"]

    def test_wrap_in_container_quotes_command(self):
        runner = CommandRunner(RunConfig(containerized=True, container_name="db1", docker_binary="podman"))
        command = ["mariadb-backup", "--backup", "--target-dir=/with space/x"]

        wrapped = runner.wrap(command)

        assert wrapped[:5] == ["podman", "exec", "db1", "bash", "-c"]
        assert shlex.split(wrapped[5]) == command


class TestRun:
    """Execution, streaming and failure handling."""

    def test_output_is_streamed_to_log(self, caplog):
        caplog.set_level(logging.INFO)
        runner = CommandRunner(RunConfig())

        code = runner.run([sys.executable, "-c", "print('first'); print('second')"], local=True)

        assert code == 0
        assert "first" in caplog.messages
        assert "second" in caplog.messages

    def test_stderr_is_merged(self, caplog):
        caplog.set_level(logging.INFO)
        runner = CommandRunner(RunConfig())

        runner.run([sys.executable, "-c", "import sys; sys.stderr.write('warned\\n')"], local=True)

        assert "warned" in caplog.messages

    def test_password_is_masked(self, caplog):
        caplog.set_level(logging.INFO)
        runner = CommandRunner(RunConfig(password="hunter2"))

        runner.run([sys.executable, "-c", "print('pw=hunter2')", "--password=hunter2"], local=True)

        assert "hunter2" not in caplog.text
        assert "pw=***" in caplog.messages

    def test_non_zero_exit_raises(self):
        runner = CommandRunner(RunConfig())

        with pytest.raises(CommandError) as excinfo:
            runner.run([sys.executable, "-c", "raise SystemExit(3)"], local=True)

        assert excinfo.value.returncode == 3

    def test_parity_mode_logs_and_continues(self, caplog):
        caplog.set_level(logging.INFO)
        runner = CommandRunner(RunConfig(ignore_tool_failures=True))

        code = runner.run([sys.executable, "-c", "raise SystemExit(3)"], local=True)

        assert code == 3
        assert "ignore_tool_failures" in caplog.text

    def test_missing_binary_raises(self):
        runner = CommandRunner(RunConfig())

        with pytest.raises(CommandError, match="Cannot start"):
            runner.run(["definitely-not-a-real-binary-xyz"], local=True)

    def test_timeout_kills_command(self):
        runner = CommandRunner(RunConfig(command_timeout=1))

        with pytest.raises(CommandTimeoutError):
            runner.run([sys.executable, "-c", "import time; time.sleep(30)"], local=True)

    def test_container_commands_go_through_docker(self, fake_tools):
        runner = CommandRunner(RunConfig(containerized=True, container_name="db1"))

        runner.run(["echo", "inside"])

        assert fake_tools.read_text(encoding="utf-8").startswith("docker exec db1 bash -c")
