"""Interactive prompts backed by the validators."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import cast

from rich.console import Console

from .validators import InputKind, InvalidInputError, validate

Reader = Callable[[], str]


@dataclass(slots=True)
class Prompter:
    """Ask the operator for values and validate the answers.

    ``attempts`` is the retry policy: with the default of one attempt the
    first invalid answer raises :class:`InvalidInputError` and the command
    exits. Higher values re-ask after printing the reason.
    """

    console: Console
    attempts: int = 1
    reader: Reader | None = None

    def ask(self, message: str, kind: InputKind | str) -> object:
        """Print *message*, read an answer and validate it as *kind*."""
        resolved = InputKind(kind)
        attempt = 1
        while True:
            raw = self._read(message)
            try:
                if resolved is InputKind.PATH:
                    return validate(resolved, raw, confirm_create=self.confirm)
                return validate(resolved, raw)
            except InvalidInputError as exc:
                if attempt >= self.attempts:
                    raise
                attempt += 1
                self.console.print(f"[yellow]{exc}[/yellow]")

    def ask_domain(self, message: str) -> str:
        """Ask for a domain name."""
        return str(self.ask(message, InputKind.DOMAIN))

    def ask_path(self, message: str) -> Path:
        """Ask for a writable directory, offering to create it."""
        return cast(Path, self.ask(message, InputKind.PATH))

    def ask_int(self, message: str, kind: InputKind) -> int:
        """Ask for an integer-valued *kind* (expiration days, port)."""
        return cast(int, self.ask(message, kind))

    def ask_ipv4(self, message: str) -> str:
        """Ask for an IPv4 address."""
        return str(self.ask(message, InputKind.IPV4))

    def confirm(self, message: str) -> bool:
        """Ask a strict ``y``/``n`` question."""
        return bool(self.ask(message, InputKind.YES_NO))

    def _read(self, message: str) -> str:
        self.console.print(message)
        if self.reader is not None:
            answer = self.reader()
        else:
            answer = self.console.input("> ")
        self.console.print()
        return answer


__all__ = ["Prompter", "Reader"]
