"""Core."""

from .config import (
    GatewayConfig,
    ResourceConfig,
    ServerConfig,
    TimeoutConfig,
    clear_config,
    get_config,
)
from .exceptions import (
    AuthRejected,
    ClientClosed,
    ConfigurationError,
    ConnectFailure,
    ProtocolMalformed,
    RelayIOError,
    ResourceExhausted,
    TunnelError,
    UnsupportedCommand,
)

__all__ = [
    # Config
    "ServerConfig",
    "GatewayConfig",
    "TimeoutConfig",
    "ResourceConfig",
    "get_config",
    "clear_config",
    # Errors
    "TunnelError",
    "ProtocolMalformed",
    "UnsupportedCommand",
    "AuthRejected",
    "ConnectFailure",
    "RelayIOError",
    "ClientClosed",
    "ResourceExhausted",
    "ConfigurationError",
]
