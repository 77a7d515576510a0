"""Timestamped backups of nginx site configuration files."""
from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

BACKUP_MARKER = "-backup-"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H:%M:%S"
_SUFFIX_PATTERN = re.compile(
    re.escape(BACKUP_MARKER) + r"(\d{4}-\d{2}-\d{2}_\d{2}:\d{2}:\d{2})$"
)


class BackupError(RuntimeError):
    """Raised when a backup cannot be created or restored."""


def backup_timestamp(backup: Path) -> str | None:
    """Return the timestamp suffix of *backup*, if it is a backup file."""
    match = _SUFFIX_PATTERN.search(backup.name)
    return match.group(1) if match else None


def original_path(backup: Path) -> Path:
    """Return the configuration path *backup* was taken from."""
    match = _SUFFIX_PATTERN.search(backup.name)
    if match is None:
        raise BackupError(f"{backup} is not a configuration backup.")
    return backup.with_name(backup.name[: match.start()])


@dataclass(slots=True)
class ConfigBackups:
    """Create, locate and restore configuration backups in one directory.

    ``scope`` selects how :meth:`latest` searches: ``"global"`` considers the
    backups of every site in the directory, ``"domain"`` only those of the
    domain passed in.
    """

    directory: Path
    scope: str = "global"

    def backup_path(self, config_path: Path, moment: datetime | None = None) -> Path:
        """Return the backup file name for *config_path* at *moment*."""
        stamp = (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)
        return config_path.with_name(f"{config_path.name}{BACKUP_MARKER}{stamp}")

    def create(self, config_path: Path, *, moment: datetime | None = None) -> Path:
        """Copy *config_path* to a timestamped sibling and return its path."""
        destination = self.backup_path(config_path, moment)
        try:
            shutil.copy2(config_path, destination)
        except OSError as exc:
            raise BackupError(
                f"Failed to create backup of {config_path}: {exc}. "
                "Please check your permissions."
            ) from exc
        return destination

    def list_backups(self, domain: str | None = None) -> list[Path]:
        """Return backups, newest first."""
        pattern = f"*.conf{BACKUP_MARKER}*"
        if self.scope == "domain" and domain is not None:
            pattern = f"{domain}.conf{BACKUP_MARKER}*"
        candidates = [
            path
            for path in self.directory.glob(pattern)
            if path.is_file() and backup_timestamp(path) is not None
        ]
        # The fixed-width timestamp orders chronologically across domains.
        return sorted(
            candidates,
            key=lambda path: (backup_timestamp(path) or "", path.name),
            reverse=True,
        )

    def latest(self, domain: str | None = None) -> Path | None:
        """Return the most recent backup, if any."""
        backups = self.list_backups(domain)
        return backups[0] if backups else None

    def restore(self, backup: Path) -> Path:
        """Copy *backup* over the configuration it was taken from."""
        target = original_path(backup)
        try:
            shutil.copy2(backup, target)
        except OSError as exc:
            raise BackupError(f"Failed to restore {target} from {backup}: {exc}") from exc
        return target


__all__ = [
    "BACKUP_MARKER",
    "BackupError",
    "ConfigBackups",
    "TIMESTAMP_FORMAT",
    "backup_timestamp",
    "original_path",
]
