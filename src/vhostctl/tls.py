"""Self-signed certificate provisioning and inspection."""
from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .commands import CommandExecutor

KEY_MODE = 0o600


class CertificateError(RuntimeError):
    """Raised when generated certificate material is unusable."""


class CertificateExistsError(RuntimeError):
    """Raised when the operator declines to overwrite existing material."""


@dataclass(frozen=True, slots=True)
class CertificateBundle:
    """Key and certificate generated for a domain."""

    domain: str
    directory: Path

    @property
    def key(self) -> Path:
        """Return the private key path."""
        return self.directory / f"{self.domain}.key"

    @property
    def certificate(self) -> Path:
        """Return the certificate path."""
        return self.directory / f"{self.domain}.crt"

    def existing_files(self) -> list[Path]:
        """Return the bundle files already present on disk."""
        return [path for path in (self.certificate, self.key) if path.exists()]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "directory": str(self.directory),
            "certificate": str(self.certificate),
            "key": str(self.key),
        }


@dataclass(frozen=True, slots=True)
class CertificateDetails:
    """Parsed view of a certificate bundle."""

    common_name: str | None
    serial_number: int
    not_valid_before: datetime
    not_valid_after: datetime
    key_size: int | None
    key_matches: bool

    @property
    def validity_days(self) -> int:
        """Return the length of the validity window in whole days."""
        return (self.not_valid_after - self.not_valid_before).days

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "common_name": self.common_name,
            "serial_number": self.serial_number,
            "not_valid_before": self.not_valid_before.isoformat(),
            "not_valid_after": self.not_valid_after.isoformat(),
            "key_size": self.key_size,
            "key_matches": self.key_matches,
        }


ConfirmOverwrite = Callable[[CertificateBundle], bool]


@dataclass(slots=True)
class CertificateProvisioner:
    """Generate a private key and self-signed certificate with ``openssl``."""

    executor: CommandExecutor
    openssl_bin: str = "openssl"
    key_size: int = 2048

    def generate(
        self,
        domain: str,
        directory: Path,
        days: int,
        *,
        confirm_overwrite: ConfirmOverwrite | None = None,
    ) -> CertificateBundle:
        """Create ``<directory>/<domain>.{key,crt}`` valid for *days*.

        When either file already exists *confirm_overwrite* is consulted;
        a negative answer raises :class:`CertificateExistsError` before
        anything is touched. Tool failures raise
        :class:`~vhostctl.commands.CommandError`.
        """
        bundle = CertificateBundle(domain=domain, directory=directory)
        if bundle.existing_files():
            if confirm_overwrite is None or not confirm_overwrite(bundle):
                raise CertificateExistsError(
                    "Aborting certificate generation. Please manually handle the "
                    "existing files or choose a different path."
                )

        self.executor.run(
            [self.openssl_bin, "genrsa", "-out", str(bundle.key), str(self.key_size)],
            error_prefix="Private key generation",
        )
        self.executor.run(
            [
                self.openssl_bin,
                "req",
                "-new",
                "-x509",
                "-nodes",
                "-days",
                str(days),
                "-key",
                str(bundle.key),
                "-out",
                str(bundle.certificate),
                "-subj",
                f"/CN={domain}",
            ],
            error_prefix="Certificate generation",
        )
        try:
            os.chmod(bundle.key, KEY_MODE)
        except OSError as exc:
            raise CertificateError(f"Failed to restrict permissions on {bundle.key}: {exc}") from exc
        return bundle


def inspect_bundle(bundle: CertificateBundle) -> CertificateDetails:
    """Parse *bundle* and return its details.

    Raises :class:`CertificateError` when either file is missing or cannot be
    parsed.
    """
    try:
        certificate = x509.load_pem_x509_certificate(bundle.certificate.read_bytes())
    except (OSError, ValueError) as exc:
        raise CertificateError(f"Failed to load certificate {bundle.certificate}: {exc}") from exc
    try:
        private_key = serialization.load_pem_private_key(bundle.key.read_bytes(), password=None)
    except (OSError, ValueError, TypeError) as exc:
        raise CertificateError(f"Failed to load private key {bundle.key}: {exc}") from exc

    names = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    common_name = str(names[0].value) if names else None
    key_size = private_key.key_size if isinstance(private_key, rsa.RSAPrivateKey) else None

    return CertificateDetails(
        common_name=common_name,
        serial_number=certificate.serial_number,
        not_valid_before=_as_utc(certificate.not_valid_before_utc),
        not_valid_after=_as_utc(certificate.not_valid_after_utc),
        key_size=key_size,
        key_matches=_public_keys_match(certificate, private_key),
    )


def verify_bundle(bundle: CertificateBundle, *, days: int) -> CertificateDetails:
    """Inspect a freshly generated bundle and check it matches the request."""
    details = inspect_bundle(bundle)
    problems: list[str] = []
    if details.common_name != bundle.domain:
        problems.append(f"common name is {details.common_name!r}, expected {bundle.domain!r}")
    if not details.key_matches:
        problems.append("certificate does not match the private key")
    if details.validity_days != days:
        problems.append(f"validity is {details.validity_days} day(s), expected {days}")
    if problems:
        raise CertificateError("Generated certificate is invalid: " + "; ".join(problems) + ".")
    return details


def _public_keys_match(cert: x509.Certificate, private_key: object) -> bool:
    public_key = getattr(private_key, "public_key", None)
    if public_key is None:  # pragma: no cover - all supported key types expose it
        return False
    encoding = serialization.Encoding.DER
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    key_bytes = cast(bytes, public_key().public_bytes(encoding=encoding, format=fmt))
    return cert.public_key().public_bytes(encoding=encoding, format=fmt) == key_bytes


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = [
    "CertificateBundle",
    "CertificateDetails",
    "CertificateError",
    "CertificateExistsError",
    "CertificateProvisioner",
    "inspect_bundle",
    "verify_bundle",
]
