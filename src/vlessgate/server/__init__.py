"""Tunnel server: connector, relay pump, session supervisor and HTTP gateway."""

from vlessgate.server.connector import (
    DatagramOutbound,
    DestinationConnector,
    Outbound,
    StreamOutbound,
)
from vlessgate.server.gateway import GatewayServer, build_supervisor
from vlessgate.server.pump import RelayPump
from vlessgate.server.session import Session, SessionState
from vlessgate.server.supervisor import ConnectionSupervisor, SupervisorLimits

__all__ = [
    "Outbound",
    "StreamOutbound",
    "DatagramOutbound",
    "DestinationConnector",
    "RelayPump",
    "Session",
    "SessionState",
    "ConnectionSupervisor",
    "SupervisorLimits",
    "GatewayServer",
    "build_supervisor",
]
