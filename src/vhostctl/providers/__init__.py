"""Provider interfaces for vhostctl."""
from __future__ import annotations

from .nginx import NginxError, NginxProvider
from .systemd import SystemdProvider
from .upstream import ProbeOutcome, ProbeResult, UpstreamProbe, classify_status

__all__ = [
    "NginxError",
    "NginxProvider",
    "ProbeOutcome",
    "ProbeResult",
    "SystemdProvider",
    "UpstreamProbe",
    "classify_status",
]
