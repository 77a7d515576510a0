"""Command execution helpers shared by providers.

Every external tool (``openssl``, ``systemctl``, the package manager) is run
through :class:`CommandExecutor` so callers only ever see a
:class:`CommandResult` and never depend on how the process was spawned.
"""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of an external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return True when the command exited with status zero."""
        return self.returncode == 0

    def summary(self) -> str:
        """Return the most useful line of output for error messages."""
        return (self.stderr or self.stdout or "no output").strip()


class CommandError(RuntimeError):
    """Raised when an external command exits non-zero or cannot be started."""

    def __init__(self, message: str, result: CommandResult) -> None:
        """Store the failing *result* alongside the message."""
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class CommandExecutor:
    """Run external commands and capture their output."""

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        error_prefix: str | None = None,
    ) -> CommandResult:
        """Run *args* and return the captured result.

        When *check* is true a non-zero exit raises :class:`CommandError`. A
        missing executable is reported as exit status 127.
        """
        command = tuple(str(arg) for arg in args)
        prefix = error_prefix or " ".join(command[:2])
        try:
            completed = subprocess.run(  # noqa: S603
                list(command),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            result = CommandResult(command, returncode=127, stderr=str(exc))
            raise CommandError(f"{command[0]} not found: {exc}", result) from exc
        result = CommandResult(
            command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and not result.ok:
            raise CommandError(
                f"{prefix} failed (exit {result.returncode}): {result.summary()}",
                result,
            )
        return result

    def which(self, name: str) -> str | None:
        """Return the resolved path of executable *name*, if installed."""
        return shutil.which(name)


__all__ = ["CommandError", "CommandExecutor", "CommandResult"]
