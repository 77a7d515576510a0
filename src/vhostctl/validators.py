"""Validation of operator-supplied values.

Each validator accepts the raw string typed by the operator and returns a
normalised value, or raises :class:`InvalidInputError` whose message is shown
to the operator verbatim.
"""
from __future__ import annotations

import os
import re
from collections.abc import Callable
from enum import Enum
from pathlib import Path

DOMAIN_PATTERN = re.compile(r"([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}")
PATH_PATTERN = re.compile(r"[a-zA-Z0-9/_-]+")
# Octets are not range-checked; see DESIGN.md.
IPV4_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+")
DIGITS_PATTERN = re.compile(r"[0-9]+")

MIN_EXPIRATION_DAYS = 1
MAX_EXPIRATION_DAYS = 365
MIN_PORT = 1
MAX_PORT = 65535


class InvalidInputError(ValueError):
    """Raised when an operator-supplied value is rejected."""


class PermissionDeniedError(InvalidInputError):
    """Raised when the invoking user cannot write to a chosen directory."""


class InputKind(str, Enum):
    """Kinds of values the operator is asked for."""

    DOMAIN = "domain"
    PATH = "path"
    EXPIRATION_DAYS = "expiration_days"
    IPV4 = "ipv4"
    PORT = "port"
    YES_NO = "yes_no"


ConfirmCallback = Callable[[str], bool]


def _bounded_int(digits: str, maximum: int) -> int | None:
    """Convert *digits* to an int, or return None when it exceeds *maximum*."""
    significant = digits.lstrip("0") or "0"
    if len(significant) > len(str(maximum)):
        return None
    number = int(significant)
    return number if number <= maximum else None


def validate_domain(raw: str) -> str:
    """Return *raw* when it looks like ``label.tld``."""
    value = raw.strip()
    if not DOMAIN_PATTERN.fullmatch(value):
        raise InvalidInputError(
            "Invalid domain name: The entered domain name is not in a valid format. "
            "Please use the format 'example.com'."
        )
    return value


def validate_path(raw: str, *, confirm_create: ConfirmCallback | None = None) -> Path:
    """Validate a certificate directory, creating it when the operator agrees.

    *confirm_create* receives the question to ask and returns the operator's
    answer; without it a missing directory is an error.
    """
    value = raw.strip()
    if not value or not PATH_PATTERN.fullmatch(value):
        raise InvalidInputError(
            "Invalid path: The specified path contains unsupported characters. "
            "Please ensure your path only includes alphanumeric characters, "
            "slashes (/), underscores (_), and hyphens (-)."
        )
    path = Path(value)
    parent = path.parent
    if not parent.is_dir():
        raise InvalidInputError(
            f"Invalid directory: The parent directory {parent} does not exist. "
            "Please create the directory manually or choose a different path."
        )
    if not path.is_dir():
        question = (
            f"The target directory {path} does not exist. "
            "Would you like to create it now? (y/n):"
        )
        if confirm_create is None or not confirm_create(question):
            raise InvalidInputError(
                "Directory creation aborted. Please create the directory manually "
                "and re-run the command."
            )
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InvalidInputError(f"Error while creating directory {path}: {exc}") from exc
    if not os.access(path, os.W_OK):
        raise PermissionDeniedError(
            f"Insufficient permissions: You do not have write access to {path}. "
            "Please adjust the permissions or choose a different directory."
        )
    return path


def validate_expiration_days(raw: str) -> int:
    """Return the certificate validity in days (1-365 inclusive)."""
    value = raw.strip()
    if not DIGITS_PATTERN.fullmatch(value):
        raise InvalidInputError("Invalid input: Expiration days must be a number.")
    days = _bounded_int(value, MAX_EXPIRATION_DAYS)
    if days is None or days < MIN_EXPIRATION_DAYS:
        raise InvalidInputError(
            f"Invalid input: Expiration days must be between {MIN_EXPIRATION_DAYS} "
            f"and {MAX_EXPIRATION_DAYS}."
        )
    return days


def validate_ipv4(raw: str) -> str:
    """Return *raw* when it is four dot-separated digit groups."""
    value = raw.strip()
    if not IPV4_PATTERN.fullmatch(value):
        raise InvalidInputError(
            "Invalid IP address format. Please enter a valid IP address."
        )
    return value


def validate_port(raw: str) -> int:
    """Return the TCP port number (1-65535 inclusive)."""
    value = raw.strip()
    port = _bounded_int(value, MAX_PORT) if DIGITS_PATTERN.fullmatch(value) else None
    if port is None or port < MIN_PORT:
        raise InvalidInputError(
            f"Invalid port number. Please enter a number between {MIN_PORT} and {MAX_PORT}."
        )
    return port


def validate_yes_no(raw: str) -> bool:
    """Return True for ``y`` and False for ``n`` (case-insensitive)."""
    value = raw.strip().lower()
    if value == "y":
        return True
    if value == "n":
        return False
    raise InvalidInputError("Invalid input: Please enter 'y' for yes or 'n' for no.")


_VALIDATORS: dict[InputKind, Callable[[str], object]] = {
    InputKind.DOMAIN: validate_domain,
    InputKind.EXPIRATION_DAYS: validate_expiration_days,
    InputKind.IPV4: validate_ipv4,
    InputKind.PORT: validate_port,
    InputKind.YES_NO: validate_yes_no,
}


def validate(
    kind: InputKind | str,
    raw: str,
    *,
    confirm_create: ConfirmCallback | None = None,
) -> object:
    """Dispatch *raw* to the validator registered for *kind*."""
    resolved = InputKind(kind)
    if resolved is InputKind.PATH:
        return validate_path(raw, confirm_create=confirm_create)
    return _VALIDATORS[resolved](raw)


__all__ = [
    "InputKind",
    "InvalidInputError",
    "PermissionDeniedError",
    "validate",
    "validate_domain",
    "validate_expiration_days",
    "validate_ipv4",
    "validate_path",
    "validate_port",
    "validate_yes_no",
]
