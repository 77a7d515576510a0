"""Detection and optional installation of required system tools."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rich.console import Console

from .commands import CommandError, CommandExecutor
from .prompts import Prompter
from .providers.systemd import SystemdProvider
from .validators import InvalidInputError


class ToolMissingError(RuntimeError):
    """Raised when a required tool is absent and the operator declines to install it."""


@dataclass(frozen=True, slots=True)
class ToolRequirement:
    """A binary the setup flow depends on."""

    name: str
    binary: str
    package: str
    service: str | None = None


def default_requirements(*, nginx_service: str, openssl_bin: str) -> tuple[ToolRequirement, ...]:
    """Return the tools needed by ``vhostctl setup``."""
    return (
        ToolRequirement(name="Nginx", binary="nginx", package="nginx", service=nginx_service),
        ToolRequirement(name="OpenSSL", binary=openssl_bin, package="openssl"),
    )


@dataclass(slots=True)
class PrerequisiteChecker:
    """Ensure required tools exist, offering to install the missing ones."""

    executor: CommandExecutor
    prompter: Prompter
    systemd: SystemdProvider
    console: Console
    package_manager: str = "apt-get"

    def missing(self, requirements: Sequence[ToolRequirement]) -> list[ToolRequirement]:
        """Return the requirements whose binary is not on ``PATH``."""
        return [item for item in requirements if self.executor.which(item.binary) is None]

    def ensure(self, requirements: Sequence[ToolRequirement]) -> list[str]:
        """Install missing tools after confirmation; return the installed names.

        Raises :class:`ToolMissingError` when the operator declines, and
        :class:`~vhostctl.commands.CommandError` when installation fails.
        """
        installed: list[str] = []
        for requirement in self.missing(requirements):
            self._install(requirement)
            installed.append(requirement.name)
            if requirement.service is not None:
                self._offer_enable(requirement.name, requirement.service)
        return installed

    def _install(self, requirement: ToolRequirement) -> None:
        name = requirement.name
        self.console.print(
            f"[yellow]{name} is not installed on your system.[/yellow]\n"
            f"This command requires {name} to function correctly and will exit "
            "unless you install it."
        )
        if not self.prompter.confirm(f"Would you like to install {name} now? (y/n):"):
            raise ToolMissingError(f"{name} is required for this command to work.")
        manager = self.package_manager
        self.executor.run([manager, "update"], error_prefix=f"{manager} update")
        try:
            self.executor.run(
                [manager, "install", "-y", requirement.package],
                error_prefix=f"{manager} install {requirement.package}",
            )
        except CommandError as exc:
            raise CommandError(f"Error while installing {name}: {exc}", exc.result) from exc

    def _offer_enable(self, name: str, service: str) -> None:
        try:
            enable = self.prompter.confirm(
                f"Do you want {name} to run when the system starts? (y/n):"
            )
        except InvalidInputError as exc:
            self.console.print(
                f"[yellow]{exc}[/yellow]\nContinuing without enabling {name} on startup."
            )
            return
        if not enable:
            self.console.print(f"{name} will not be enabled to run on startup.")
            return
        result = self.systemd.enable(service)
        if not result.ok:
            self.console.print(
                f"[red]Error while enabling {name} to run on startup: {result.summary()}[/red]"
            )


__all__ = [
    "PrerequisiteChecker",
    "ToolMissingError",
    "ToolRequirement",
    "default_requirements",
]
