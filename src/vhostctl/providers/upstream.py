"""HTTP connectivity probe for the proxied upstream."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import requests

UNREACHABLE_CODE = "000"


class ProbeOutcome(str, Enum):
    """Classification of a probe response."""

    REACHABLE = "reachable"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    UNREACHABLE = "unreachable"
    UNEXPECTED = "unexpected"


_OUTCOME_BY_STATUS = {
    200: ProbeOutcome.REACHABLE,
    404: ProbeOutcome.NOT_FOUND,
    500: ProbeOutcome.SERVER_ERROR,
}


def classify_status(status_code: int | None) -> ProbeOutcome:
    """Map an HTTP status (``None`` when nothing answered) to an outcome."""
    if status_code is None or status_code == 0:
        return ProbeOutcome.UNREACHABLE
    return _OUTCOME_BY_STATUS.get(status_code, ProbeOutcome.UNEXPECTED)


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of probing ``host:port``."""

    host: str
    port: int
    outcome: ProbeOutcome
    status_code: int | None = None
    error: str | None = None

    @property
    def address(self) -> str:
        """Return ``host:port``."""
        return f"{self.host}:{self.port}"

    @property
    def code(self) -> str:
        """Return the status code as reported by curl-style tools."""
        return str(self.status_code) if self.status_code else UNREACHABLE_CODE

    @property
    def ok(self) -> bool:
        """Return True when the upstream answered 200."""
        return self.outcome is ProbeOutcome.REACHABLE

    def describe(self) -> str:
        """Return a human readable summary."""
        address = self.address
        if self.outcome is ProbeOutcome.REACHABLE:
            return f"Success: The service at {address} is reachable and functioning."
        if self.outcome is ProbeOutcome.NOT_FOUND:
            return f"Error: The service at {address} could not be found (404 Not Found)."
        if self.outcome is ProbeOutcome.SERVER_ERROR:
            return (
                f"Error: The service at {address} encountered an internal error "
                "(500 Internal Server Error)."
            )
        if self.outcome is ProbeOutcome.UNREACHABLE:
            return f"Error: The request to {address} timed out or the service is unreachable."
        return f"Notice: Received HTTP status code {self.code} from the service at {address}."

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "address": self.address,
            "outcome": self.outcome.value,
            "status_code": self.code,
            "error": self.error,
        }


class HTTPSession(Protocol):
    """Subset of :class:`requests.Session` used by the probe."""

    def get(self, url: str, **kwargs: object) -> requests.Response:
        """Issue a GET request."""


@dataclass(slots=True)
class UpstreamProbe:
    """Issue a single GET against the upstream and classify the answer."""

    timeout: float = 5.0
    session: HTTPSession = field(default_factory=requests.Session)

    def probe(self, host: str, port: int) -> ProbeResult:
        """Probe ``http://host:port`` once, without following redirects."""
        url = f"http://{host}:{port}"
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as exc:
            return ProbeResult(
                host=host,
                port=port,
                outcome=ProbeOutcome.UNREACHABLE,
                error=str(exc),
            )
        status = int(response.status_code)
        return ProbeResult(
            host=host,
            port=port,
            outcome=classify_status(status),
            status_code=status,
        )


__all__ = ["ProbeOutcome", "ProbeResult", "UpstreamProbe", "classify_status"]
