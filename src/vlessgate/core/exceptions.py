"""Session error taxonomy.

Every TunnelError is local to one session: the supervisor logs it, counts it
and closes the WebSocket without writing any detail back to the client.
"""

from __future__ import annotations


class TunnelError(Exception):
    """Base class for errors that end a single tunnel session."""

    reason = "tunnel_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason


class ProtocolMalformed(TunnelError):
    """Tunnel-setup header violates the wire format."""

    reason = "malformed"


class UnsupportedCommand(ProtocolMalformed):
    """Header names a command the gateway recognises but does not serve (MUX)."""

    reason = "unsupported_command"


class AuthRejected(TunnelError):
    """Client identifier does not match the configured identity."""

    reason = "auth_rejected"


class ConnectFailure(TunnelError):
    """Resolving or connecting to the destination failed or timed out."""

    reason = "connect_failure"


class RelayIOError(TunnelError):
    """A read or write failed after relaying began."""

    reason = "relay_io_error"


class ClientClosed(TunnelError):
    """Client went away before the relay started."""

    reason = "client_closed"


class ResourceExhausted(TunnelError):
    """Header never completed within bounds, or the session ceiling was hit."""

    reason = "resource_exhausted"


class ConfigurationError(Exception):
    """Startup misconfiguration. Fatal to the process."""
