"""Command line interface for the MariaDB hot backup assistant."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from hot_assistant.backup import BackupError, BackupRunner, RestoreError
from hot_assistant.commands import CommandRunner
from hot_assistant.config import CONFIG_FILENAME, MODE_BACKUP, MODE_RESTORE, ConfigError, RunConfig, load_config
from hot_assistant.lock import ConcurrencyGuard, LockError
from hot_assistant.transfer import RemoteTransfer, TransferError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOGGER = logging.getLogger("mysql_hot_assistant")

# Flags whose value is taken verbatim, even when it starts with "-".
VALUE_FLAGS = (
    "--file",
    "--remote",
    "--container-name",
    "--host",
    "--port",
    "--user",
    "--password",
    "--log-dir",
    "--backup-dir",
    "--config",
)


class UsageParser(argparse.ArgumentParser):
    """Print the full help and exit 1 on any bad token."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_help(sys.stderr)
        self.exit(1, f"\n{self.prog}: error: {message}\n")


class ModeAction(argparse.Action):
    """Store a mode constant and remember every mode flag seen."""

    def __init__(self, option_strings, dest, const=None, **kwargs):
        super().__init__(option_strings, dest, nargs=0, const=const, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        seen = list(getattr(namespace, "modes_seen", None) or [])
        seen.append(self.const)
        namespace.modes_seen = seen
        setattr(namespace, self.dest, self.const)


def build_parser() -> argparse.ArgumentParser:
    parser = UsageParser(
        prog="mysql-hot-assistant",
        allow_abbrev=False,
        description="Hot backup and restore of MariaDB/MySQL with mariadb-backup.",
    )
    parser.add_argument("--backup", action=ModeAction, dest="mode", const=MODE_BACKUP,
                        help="Perform a backup of the database.")
    parser.add_argument("--restore", action=ModeAction, dest="mode", const=MODE_RESTORE,
                        help="Restore the database from a backup.")
    parser.add_argument("--file", dest="restore_file", metavar="FILE_PATH",
                        help="Specify the backup file for restoring.")
    parser.add_argument("--remote", metavar="USER@REMOTE:PATH",
                        help="Remote server for backup transfer (optional).")
    parser.add_argument("--container-name", metavar="NAME",
                        help="MariaDB container name if running inside Docker.")
    parser.add_argument("--host", metavar="HOSTNAME", help="MariaDB host for connection (default: 127.0.0.1).")
    parser.add_argument("--port", type=int, metavar="PORT", help="MariaDB port (default: 3306).")
    parser.add_argument("--user", metavar="USERNAME", help="MariaDB user (default: root).")
    parser.add_argument("--password", metavar="PASSWORD", help="MariaDB password.")
    parser.add_argument("--log-dir", metavar="PATH", help="Directory where logs will be stored.")
    parser.add_argument("--backup-dir", metavar="PATH", help="Directory where backups will be saved.")
    parser.add_argument("--force", action="store_true", default=None,
                        help="Force stop any existing process and run the script.")
    parser.add_argument("--config", metavar="PATH", default=CONFIG_FILENAME,
                        help="YAML file with default settings (ignored when missing).")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    parser.set_defaults(mode=None, modes_seen=[])
    return parser


def join_flag_values(argv: Iterable[str]) -> List[str]:
    """Rewrite ``--flag value`` as ``--flag=value`` for the value flags.

    argparse refuses a separate value that looks like an option, so a password
    such as ``-secret`` would otherwise be a usage error. A value flag with
    nothing after it is left alone and still fails to parse.
    """

    tokens = list(argv)
    joined: List[str] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token == "--":
            joined.extend(tokens[index:])
            break
        if token in VALUE_FLAGS and index + 1 < len(tokens):
            joined.append(f"{token}={tokens[index + 1]}")
            index += 2
            continue
        joined.append(token)
        index += 1
    return joined


def parse_args(parser: argparse.ArgumentParser, argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    if argv is None:
        argv = sys.argv[1:]
    return parser.parse_args(join_flag_values(argv))


def configure_logging(level: int) -> None:
    log_level = logging.DEBUG if level >= 1 else logging.INFO
    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(log_level)


def open_run_log(path: Path) -> logging.Handler:
    """Attach the per-run log file to the root logger."""

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


def close_run_log(handler: logging.Handler) -> None:
    logging.getLogger().removeHandler(handler)
    handler.close()


def build_config(args: argparse.Namespace) -> RunConfig:
    base = load_config(Path(args.config))
    return base.with_overrides(
        mode=args.mode,
        restore_file=args.restore_file,
        remote=args.remote,
        container_name=args.container_name,
        host=args.host,
        port=args.port,
        user=args.user,
        password=args.password,
        log_dir=args.log_dir,
        backup_dir=args.backup_dir,
        force=args.force,
    )


def handle_backup(config: RunConfig) -> Path:
    commands = CommandRunner(config)
    archive = BackupRunner(config=config, commands=commands).backup()
    RemoteTransfer(config=config, commands=commands).transfer(archive)
    return archive


def handle_restore(config: RunConfig) -> None:
    BackupRunner(config=config).restore(config.restore_file)


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parse_args(parser, argv)
    configure_logging(args.verbose)
    if not args.mode:
        parser.print_help(sys.stderr)
        sys.exit(1)

    try:
        config = build_config(args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        handler = open_run_log(config.log_file)
    except OSError as exc:
        print(f"Cannot open log file {config.log_file}: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        run(config, args.modes_seen)
    finally:
        close_run_log(handler)


def run(config: RunConfig, modes_seen: Iterable[str] = ()) -> None:
    if len(set(modes_seen)) > 1:
        LOGGER.warning("Both --backup and --restore were given; the last one (%s) wins.", config.mode)

    try:
        with ConcurrencyGuard(config.lock_file, config.pid_file, force=config.force):
            if config.mode == MODE_BACKUP:
                handle_backup(config)
            elif config.mode == MODE_RESTORE:
                handle_restore(config)
    except LockError as exc:
        LOGGER.error("%s", exc)
        sys.exit(1)
    except (BackupError, RestoreError, TransferError) as exc:
        LOGGER.error("%s", exc)
        sys.exit(1)
    except OSError as exc:
        LOGGER.error("Filesystem error: %s", exc)
        sys.exit(1)

    LOGGER.info("Process finished at %s", datetime.now().strftime("%c"))


if __name__ == "__main__":
    main()
