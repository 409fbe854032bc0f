"""Helper utilities for the MariaDB hot backup assistant."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional


def ensure_directory(path: Path) -> Path:
    """Create *path* if it does not exist and return it."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def timestamp_for_filename(dt: Optional[datetime] = None) -> str:
    # No ':' so the value is safe in file names on every platform.
    dt = dt or datetime.now()
    return dt.strftime("%Y-%m-%d_%H%M%S")


def mask_sensitive(value: str, secrets: Iterable[Optional[str]]) -> str:
    """Replace occurrences of secret values in *value* with '***'."""

    masked = value
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, "***")
    return masked


__all__ = [
    "ensure_directory",
    "timestamp_for_filename",
    "mask_sensitive",
]
