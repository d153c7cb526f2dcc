"""Per-connection tunnel session state."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

import structlog
from aiohttp import web

from vlessgate.protocol.header import TunnelRequest
from vlessgate.server.connector import Outbound

logger = structlog.get_logger()


class SessionState(Enum):
    AWAITING_HEADER = "awaiting_header"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSED = "closed"


_NEXT_STATE = {
    SessionState.AWAITING_HEADER: SessionState.AUTHENTICATING,
    SessionState.AUTHENTICATING: SessionState.CONNECTING,
    SessionState.CONNECTING: SessionState.RELAYING,
}


@dataclass
class Session:
    """One accepted WebSocket and, once connected, its outbound connection.

    Both handles are owned by the session and released together by close().
    """

    websocket: web.WebSocketResponse
    peer: str = ""
    id: UUID = field(default_factory=uuid4)
    state: SessionState = SessionState.AWAITING_HEADER
    request: TunnelRequest | None = None
    outbound: Outbound | None = None
    bytes_up: int = 0
    bytes_down: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    close_reason: str | None = None
    _close_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def advance(self, state: SessionState) -> None:
        """Move to the next lifecycle state. Only CLOSED may skip ahead."""
        if state is SessionState.CLOSED:
            self.state = state
            return
        if _NEXT_STATE.get(self.state) is not state:
            raise RuntimeError(f"illegal session transition {self.state.value} -> {state.value}")
        logger.debug(
            "Session state",
            session_id=str(self.id),
            previous=self.state.value,
            state=state.value,
        )
        self.state = state

    async def close(self, reason: str = "normal") -> bool:
        """Release both connection handles. Returns False if already closed."""
        async with self._close_lock:
            if self.close_reason is not None:
                return False
            self.close_reason = reason
            self.advance(SessionState.CLOSED)

            if self.outbound is not None:
                with contextlib.suppress(Exception):
                    await self.outbound.close()
            if not self.websocket.closed:
                with contextlib.suppress(Exception):
                    await self.websocket.close()
            return True

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "peer": self.peer,
            "state": self.state.value,
            "target": self.request.target if self.request else None,
            "command": self.request.command.name if self.request else None,
            "bytes_up": self.bytes_up,
            "bytes_down": self.bytes_down,
            "created_at": self.created_at.isoformat(),
        }
