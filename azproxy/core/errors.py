"""Project error hierarchy."""

from __future__ import annotations


class ProxyError(Exception):
    """Base error."""


class ClientInputError(ProxyError):
    """Raised when the inbound body is not a JSON object."""


class UpstreamConnectionError(ProxyError):
    """Raised when the upstream cannot be reached (DNS, TCP, TLS, timeout)."""


class UpstreamStatusError(ProxyError):
    """Raised when the upstream answers with a non-2xx status."""

    def __init__(self, status_code: int, reason: str, body: str) -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"{status_code} {reason}\n{body}")


class StreamingFault(ProxyError):
    """Raised when reading an already-started upstream stream fails."""


class UpstreamCancelled(ProxyError):
    """Raised when the downstream client went away and the upstream call was aborted.

    This is normal control flow, not a failure.
    """
