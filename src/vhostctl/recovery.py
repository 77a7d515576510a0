"""Rollback and interruption cleanup for a setup run.

A :class:`RunContext` carries everything recovery needs to know about the
current run (the certificate directory once it is known, and the domain used
to scope backup lookups). :class:`RecoveryManager` offers two flavours of
recovery:

* :meth:`RecoveryManager.rollback` runs after a failure. It asks whether the
  newest configuration backup should be restored, then removes the
  certificate directory.
* :meth:`RecoveryManager.cleanup` runs after SIGINT/SIGTERM. No further
  interaction is possible, so the newest backup is restored unconditionally.

Neither raises because one of its own steps failed; problems are collected in
the returned :class:`RecoveryReport`.
"""
from __future__ import annotations

import shutil
import signal
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType

from rich.console import Console

from .backups import BackupError, ConfigBackups
from .prompts import Prompter
from .validators import InvalidInputError

DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class RunInterrupted(RuntimeError):
    """Raised inside the main flow when a termination signal arrives."""

    def __init__(self, signum: int, run: RunContext) -> None:
        """Record the signal number and the run being interrupted."""
        super().__init__(f"Interrupted by {signal.Signals(signum).name}")
        self.signum = signum
        self.run = run


@dataclass(slots=True)
class RunContext:
    """Cleanup targets of the current run."""

    domain: str | None = None
    certificate_dir: Path | None = None

    def track_certificates(self, directory: Path) -> None:
        """Register the certificate directory to remove on failure."""
        if self.certificate_dir is not None and self.certificate_dir != directory:
            raise ValueError(
                f"Run already tracks {self.certificate_dir}; refusing to track {directory}."
            )
        self.certificate_dir = directory


@dataclass(slots=True)
class RecoveryReport:
    """What a rollback or cleanup did."""

    mode: str
    backup: Path | None = None
    restored: Path | None = None
    certificates_removed: Path | None = None
    aborted: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "mode": self.mode,
            "backup": str(self.backup) if self.backup else None,
            "restored": str(self.restored) if self.restored else None,
            "certificates_removed": (
                str(self.certificates_removed) if self.certificates_removed else None
            ),
            "aborted": self.aborted,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class RecoveryManager:
    """Restore configuration backups and remove generated certificates."""

    backups: ConfigBackups
    prompter: Prompter
    console: Console

    def rollback(self, run: RunContext) -> RecoveryReport:
        """Interactive rollback after a failure."""
        report = RecoveryReport(mode="rollback")
        self.console.print("[bold]Rolling back changes...[/bold]")
        backup = self.backups.latest(run.domain)
        report.backup = backup
        if backup is None:
            self.console.print("No backup file found. No rollback performed.")
        else:
            self.console.print(f"Backup file found at {backup}.")
            try:
                restore = self.prompter.confirm("Do you want to restore the backup? (y/n):")
            except (InvalidInputError, EOFError) as exc:
                self.console.print(f"[red]{str(exc) or 'No answer received.'}[/red]")
                report.aborted = True
                restore = False
            if restore:
                self._restore(backup, report)
            elif not report.aborted:
                self.console.print(
                    "Backup not restored. Manual intervention might be required."
                )
        self._remove_certificates(run, report)
        return report

    def cleanup(self, run: RunContext) -> RecoveryReport:
        """Non-interactive cleanup after an interruption."""
        report = RecoveryReport(mode="cleanup")
        self.console.print("[bold]Interrupted. Performing cleanup...[/bold]")
        backup = self.backups.latest(run.domain)
        report.backup = backup
        if backup is None:
            self.console.print("No backup file found. Proceeding with cleanup...")
        else:
            self.console.print(f"Backup file found at {backup}. Restoring the backup...")
            self._restore(backup, report)
        self._remove_certificates(run, report)
        self.console.print("Cleanup completed.")
        return report

    def _restore(self, backup: Path, report: RecoveryReport) -> None:
        try:
            report.restored = self.backups.restore(backup)
        except BackupError as exc:
            report.errors.append(str(exc))
            self.console.print(
                f"[red]Error: Couldn't restore configuration file from backup: {exc}[/red]"
            )
            return
        self.console.print(f"Configuration file {report.restored} restored from backup.")

    def _remove_certificates(self, run: RunContext, report: RecoveryReport) -> None:
        directory = run.certificate_dir
        if directory is None or not directory.is_dir():
            return
        self.console.print(f"Removing generated certificate files from {directory}...")
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            report.errors.append(f"Failed to remove {directory}: {exc}")
            self.console.print(
                f"[red]Failed to remove certificate files from {directory}: {exc}. "
                "Please check your permissions and try again.[/red]"
            )
            return
        report.certificates_removed = directory
        self.console.print("Certificate files removed successfully.")


@contextmanager
def interrupt_guard(
    run: RunContext,
    signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
) -> Iterator[RunContext]:
    """Turn *signals* into :class:`RunInterrupted` carrying *run* for the block.

    Previous handlers are reinstated on exit.
    """

    def _handler(signum: int, frame: FrameType | None) -> None:
        raise RunInterrupted(signum, run)

    previous = {sig: signal.getsignal(sig) for sig in signals}
    for sig in signals:
        signal.signal(sig, _handler)
    try:
        yield run
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@contextmanager
def signals_ignored(signals: Sequence[signal.Signals] = DEFAULT_SIGNALS) -> Iterator[None]:
    """Ignore *signals* for the block so cleanup cannot be cut short."""
    previous = {sig: signal.getsignal(sig) for sig in signals}
    for sig in signals:
        signal.signal(sig, signal.SIG_IGN)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


__all__ = [
    "RecoveryManager",
    "RecoveryReport",
    "RunContext",
    "RunInterrupted",
    "interrupt_guard",
    "signals_ignored",
]
