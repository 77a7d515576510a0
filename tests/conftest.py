"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import io
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from rich.console import Console

from vhostctl.commands import CommandError, CommandExecutor, CommandResult


@lru_cache(maxsize=1)
def _private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _key_pem() -> bytes:
    return _private_key().private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _certificate_pem(common_name: str, days: int, key: rsa.RSAPrivateKey | None = None) -> bytes:
    signer = key or _private_key()
    now = datetime.now(UTC).replace(microsecond=0)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(signer.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=days))
        .sign(signer, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


def write_bundle(directory: Path, domain: str, days: int = 30) -> tuple[Path, Path]:
    """Write a matching ``<domain>.crt``/``<domain>.key`` pair into *directory*."""
    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / f"{domain}.crt"
    key_path = directory / f"{domain}.key"
    key_path.write_bytes(_key_pem())
    cert_path.write_bytes(_certificate_pem(domain, days))
    return cert_path, key_path


@pytest.fixture
def bundle_writer() -> Callable[..., tuple[Path, Path]]:
    """Return a helper that writes real PEM material."""
    return write_bundle


class FakeCommands:
    """Stand-in for external tools run through :class:`CommandExecutor`.

    ``openssl genrsa``/``openssl req`` write real PEM files so the generated
    bundle passes inspection. Other commands succeed unless registered in
    ``failures``. ``hooks`` run before a command, keyed like ``failures``
    (``"openssl req"``, ``"systemctl restart"``...).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[str, tuple[int, str]] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.installed: set[str] = {"nginx", "openssl", "systemctl", "apt-get"}
        self.subject_override: str | None = None

    def fail(self, key: str, *, returncode: int = 1, stderr: str = "boom") -> None:
        self.failures[key] = (returncode, stderr)

    def keys(self) -> list[str]:
        return [self._key(call) for call in self.calls]

    def run(
        self,
        args: Iterable[str],
        *,
        check: bool = True,
        error_prefix: str | None = None,
    ) -> CommandResult:
        command = tuple(str(arg) for arg in args)
        self.calls.append(command)
        key = self._key(command)
        hook = self.hooks.get(key)
        if hook is not None:
            hook()
        if key in self.failures:
            returncode, stderr = self.failures[key]
            result = CommandResult(command, returncode=returncode, stderr=stderr)
            if check:
                raise CommandError(
                    f"{error_prefix or key} failed (exit {returncode}): {stderr}",
                    result,
                )
            return result
        if key == "openssl genrsa":
            Path(command[command.index("-out") + 1]).write_bytes(_key_pem())
        elif key == "openssl req":
            days = int(command[command.index("-days") + 1])
            subject = command[command.index("-subj") + 1].removeprefix("/CN=")
            Path(command[command.index("-out") + 1]).write_bytes(
                _certificate_pem(self.subject_override or subject, days)
            )
        return CommandResult(command, returncode=0)

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.installed else None

    @staticmethod
    def _key(command: tuple[str, ...]) -> str:
        return f"{Path(command[0]).name} {command[1]}" if len(command) > 1 else command[0]


@pytest.fixture
def fake_commands(monkeypatch: pytest.MonkeyPatch) -> FakeCommands:
    """Route every :class:`CommandExecutor` call to a :class:`FakeCommands`."""
    fake = FakeCommands()
    monkeypatch.setattr(CommandExecutor, "run", staticmethod(fake.run))
    monkeypatch.setattr(CommandExecutor, "which", staticmethod(fake.which))
    return fake


@pytest.fixture
def console() -> Console:
    """Return a console writing into an in-memory buffer."""
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def scripted_reader() -> Callable[[Iterable[str]], Callable[[], str]]:
    """Return a factory producing readers that replay scripted answers."""

    def factory(answers: Iterable[str]) -> Callable[[], str]:
        pending = list(answers)

        def reader() -> str:
            if not pending:
                raise EOFError("no more scripted answers")
            return pending.pop(0)

        return reader

    return factory


@dataclass(frozen=True)
class SiteDirs:
    """Temporary nginx directories."""

    available: Path
    enabled: Path


@pytest.fixture
def sites(tmp_path: Path) -> SiteDirs:
    """Create temporary sites-available/sites-enabled directories."""
    available = tmp_path / "sites-available"
    enabled = tmp_path / "sites-enabled"
    available.mkdir()
    enabled.mkdir()
    return SiteDirs(available=available, enabled=enabled)
