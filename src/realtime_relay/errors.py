"""Error taxonomy for the realtime relay.

Only ``ConnectError`` ends a session on its own; the others are logged,
reported to the client through the ``error`` event and the session keeps
running.
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for relay faults carrying a client-safe message."""

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> Dict[str, Any]:
        return {"message": self.message}

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class ConnectError(RelayError):
    """Upstream handshake, authentication or configuration failed."""

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.status_code = status_code


class TransportError(RelayError):
    """Socket fault mid-session, or a send on a connection that is not open."""


class ProtocolError(RelayError):
    """Inbound message could not be parsed or has no usable type."""


class AudioEncodingWarning(RelayError):
    """Audio chunk or delta was empty or not valid base64."""
