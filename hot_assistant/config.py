"""Run configuration for the hot backup assistant."""
from __future__ import annotations

import tempfile
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Optional

import yaml

from .utils import timestamp_for_filename

CONFIG_FILENAME = "hot-assistant.yaml"
LOG_FILE_PREFIX = "mysql-backup-restore"
LOCK_FILENAME = "mysql_backup_restore.lock"
PID_FILENAME = "mysql_backup_restore.pid"

MODE_BACKUP = "backup"
MODE_RESTORE = "restore"
MODES = (MODE_BACKUP, MODE_RESTORE)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class RunConfig:
    mode: Optional[str] = None
    backup_dir: str = "/var/backups/mariadb"
    log_dir: str = "/var/log/mariadb-backup"
    container_backup_dir: str = "/var/lib/mysql-backup"
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: str = ""
    container_name: str = "mariadb"
    containerized: bool = False
    remote: Optional[str] = None
    restore_file: Optional[str] = None
    force: bool = False
    lock_dir: str = field(default_factory=tempfile.gettempdir)
    command_timeout: Optional[int] = None
    ignore_tool_failures: bool = False
    mariadb_backup_binary: str = "mariadb-backup"
    tar_binary: str = "tar"
    docker_binary: str = "docker"
    scp_binary: str = "scp"
    timestamp: str = field(default_factory=timestamp_for_filename)

    def validate(self) -> None:
        if self.mode is not None and self.mode not in MODES:
            raise ConfigError(f"Unknown mode '{self.mode}'. Use 'backup' or 'restore'.")
        if not 0 < self.port < 65536:
            raise ConfigError(f"Port {self.port} is out of range.")
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ConfigError("command_timeout must be a positive number of seconds.")
        if not self.backup_dir:
            raise ConfigError("Backup directory must not be empty.")
        if not self.log_dir:
            raise ConfigError("Log directory must not be empty.")
        if self.containerized and not self.container_name:
            raise ConfigError("Containerized mode needs a container name.")

    @classmethod
    def from_dict(cls, data: Dict) -> "RunConfig":
        allowed = {item.name for item in fields(cls)} - {"mode", "timestamp"}
        unknown = sorted(str(key) for key in set(data) - allowed)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        # null in the file means "use the default"
        values = {key: value for key, value in data.items() if value is not None}
        if "port" in values:
            values["port"] = _safe_int(values["port"])
        if "command_timeout" in values:
            values["command_timeout"] = _safe_int(values["command_timeout"])
        for key in ("containerized", "force", "ignore_tool_failures"):
            if key in values:
                values[key] = _safe_bool(key, values[key])
        for key in ("backup_dir", "log_dir", "container_backup_dir", "lock_dir", "host", "user", "password", "remote"):
            if key in values:
                values[key] = str(values[key])
        config = cls(**values)
        config.validate()
        return config

    def with_overrides(self, **overrides) -> "RunConfig":
        """Return a copy with non-``None`` values from *overrides* applied."""

        values = {key: value for key, value in overrides.items() if value is not None}
        if "container_name" in values:
            values["containerized"] = True
        config = replace(self, **values)
        config.validate()
        return config

    # ------------------------------------------------------------------
    @property
    def log_file(self) -> Path:
        return Path(self.log_dir) / f"{LOG_FILE_PREFIX}-{self.timestamp}.log"

    @property
    def lock_file(self) -> Path:
        return Path(self.lock_dir) / LOCK_FILENAME

    @property
    def pid_file(self) -> Path:
        return Path(self.lock_dir) / PID_FILENAME

    def __repr__(self) -> str:
        shown = ", ".join(
            f"{item.name}={'***' if item.name == 'password' and self.password else getattr(self, item.name)!r}"
            for item in fields(self)
        )
        return f"RunConfig({shown})"


# ---------------------------------------------------------------------------
def _safe_int(value, default: Optional[int] = None) -> Optional[int]:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Value '{value}' cannot be converted to an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Value '{value}' cannot be converted to an integer.")


def _safe_bool(key: str, value) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Key '{key}' must be true or false, got '{value}'.")


# ---------------------------------------------------------------------------
def load_config(path: Optional[Path] = None) -> RunConfig:
    """Read defaults from a YAML file; a missing file yields built-in defaults."""

    if path is None:
        return RunConfig()
    path = Path(path)
    if not path.exists():
        return RunConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    if not data:
        return RunConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping.")
    return RunConfig.from_dict(data)


__all__ = [
    "ConfigError",
    "MODE_BACKUP",
    "MODE_RESTORE",
    "RunConfig",
    "load_config",
]
