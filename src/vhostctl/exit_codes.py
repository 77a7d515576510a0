"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes reported by ``vhostctl``.

    Every failure class (validation, missing tool, generation, write, restart,
    interruption) shares a single non-zero status.
    """

    OK = 0
    FAILURE = 1
