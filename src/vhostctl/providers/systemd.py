"""Systemd provider for controlling the web server service."""
from __future__ import annotations

from dataclasses import dataclass

from ..commands import CommandError, CommandExecutor, CommandResult


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` for a single service.

    Both operations report their outcome as a :class:`CommandResult` instead
    of raising; callers decide whether a failure is fatal.
    """

    executor: CommandExecutor
    systemctl_bin: str = "systemctl"

    def restart(self, service: str) -> CommandResult:
        """Restart *service*."""
        return self._systemctl("restart", service)

    def enable(self, service: str) -> CommandResult:
        """Enable *service* at boot."""
        return self._systemctl("enable", service)

    def _systemctl(self, command: str, service: str) -> CommandResult:
        try:
            return self.executor.run(
                [self.systemctl_bin, command, service],
                check=False,
                error_prefix=f"{self.systemctl_bin} {command}",
            )
        except CommandError as exc:
            return exc.result


__all__ = ["SystemdProvider"]
