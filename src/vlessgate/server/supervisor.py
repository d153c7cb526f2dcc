"""Connection supervisor: one isolated tunnel session per accepted WebSocket."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from aiohttp import WSMsgType, web

from vlessgate.core.exceptions import (
    AuthRejected,
    ClientClosed,
    ProtocolMalformed,
    ResourceExhausted,
    TunnelError,
)
from vlessgate.observability.metrics import ACTIVE_SESSIONS, SESSIONS, SESSIONS_CLOSED
from vlessgate.protocol.header import HeaderDecoder, Malformed, Parsed, response_header
from vlessgate.security.identity import Identity, IdentityGate
from vlessgate.server.connector import DestinationConnector, Outbound
from vlessgate.server.pump import RelayPump
from vlessgate.server.session import Session, SessionState

logger = structlog.get_logger()

_CLOSE_TYPES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


@dataclass(frozen=True)
class SupervisorLimits:
    """Per-session and global ceilings."""

    max_sessions: int = 1024
    header_timeout: float = 10.0
    header_max_frames: int = 16


class ConnectionSupervisor:
    """Drives each accepted WebSocket through header, auth, connect and relay.

    Failures end only the session they occur in. Whatever the failure, the
    client sees nothing but a closed WebSocket.
    """

    def __init__(
        self,
        identity: Identity,
        connector: DestinationConnector | None = None,
        limits: SupervisorLimits | None = None,
    ) -> None:
        self._gate = IdentityGate(identity)
        self._connector = connector or DestinationConnector()
        self._limits = limits or SupervisorLimits()
        self._sessions: dict[UUID, Session] = {}
        self._started_at = datetime.now(UTC)

    @property
    def limits(self) -> SupervisorLimits:
        return self._limits

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def handle(self, websocket: web.WebSocketResponse, peer: str = "") -> Session:
        """Run one session to completion. Never raises except on cancellation."""
        session = Session(websocket=websocket, peer=peer)
        log = logger.bind(session_id=str(session.id), peer=peer)

        if len(self._sessions) >= self._limits.max_sessions:
            log.warning("Session ceiling reached", limit=self._limits.max_sessions)
            await session.close(ResourceExhausted.reason)
            SESSIONS_CLOSED.labels(reason=ResourceExhausted.reason).inc()
            return session

        self._sessions[session.id] = session
        ACTIVE_SESSIONS.inc()
        reason = "normal"

        try:
            await self._drive(session, log)
        except (AuthRejected, ProtocolMalformed) as e:
            reason = e.reason
            log.warning("Session rejected", reason=e.reason, detail=e.message)
        except TunnelError as e:
            reason = e.reason
            log.info("Session failed", reason=e.reason, detail=e.message)
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception:
            reason = "internal_error"
            log.exception("Unexpected session error")
        finally:
            self._sessions.pop(session.id, None)
            ACTIVE_SESSIONS.dec()
            await session.close(reason)
            SESSIONS_CLOSED.labels(reason=reason).inc()
            log.info(
                "Session closed",
                reason=reason,
                bytes_up=session.bytes_up,
                bytes_down=session.bytes_down,
                duration=(datetime.now(UTC) - session.created_at).total_seconds(),
            )

        return session

    async def _drive(self, session: Session, log: Any) -> None:
        parsed = await self._read_header(session)
        request = parsed.request
        session.request = request

        session.advance(SessionState.AUTHENTICATING)
        self._gate.check(request)

        session.advance(SessionState.CONNECTING)
        log = log.bind(target=request.target, command=request.command.name)
        log.debug("Connecting to destination")
        outbound, held = await self._connect(session)
        session.outbound = outbound

        session.advance(SessionState.RELAYING)
        SESSIONS.labels(command=request.command.name.lower()).inc()
        log.info("Session relaying")

        pump = RelayPump(
            session,
            session.websocket,
            outbound,
            response_prefix=response_header(request.version),
        )
        ended_by = await pump.run(initial=[parsed.remainder, *held])
        log.debug("Relay finished", ended_by=ended_by)

    async def _read_header(self, session: Session) -> Parsed:
        ws = session.websocket
        decoder = HeaderDecoder()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._limits.header_timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ResourceExhausted("header not completed in time")
            try:
                msg = await ws.receive(timeout=remaining)
            except TimeoutError as e:
                raise ResourceExhausted("header not completed in time") from e

            if msg.type == WSMsgType.BINARY:
                data = msg.data
            elif msg.type == WSMsgType.TEXT:
                raise ProtocolMalformed("text frame in header")
            elif msg.type in _CLOSE_TYPES:
                raise ClientClosed("closed before header completed")
            elif msg.type == WSMsgType.ERROR:
                raise ClientClosed(f"websocket error before header: {msg.data}")
            else:
                continue

            result = decoder.feed(data)
            if isinstance(result, Parsed):
                return result
            if isinstance(result, Malformed):
                raise ProtocolMalformed(result.reason)
            if decoder.frames >= self._limits.header_max_frames:
                raise ResourceExhausted(f"header spans more than {decoder.frames} frames")

    async def _connect(self, session: Session) -> tuple[Outbound, list[bytes]]:
        """Open the outbound connection while watching the client.

        A client close cancels the pending connect. Data frames arriving in
        the meantime are held, up to header_max_frames of them, and returned
        so they are written after the header remainder.
        """
        assert session.request is not None
        connect = asyncio.create_task(self._connector.open(session.request))
        receive: asyncio.Task | None = None
        held: list[bytes] = []
        handed_off = False

        try:
            while not connect.done():
                if receive is None and len(held) < self._limits.header_max_frames:
                    receive = asyncio.create_task(session.websocket.receive())
                waiters = {connect} if receive is None else {connect, receive}
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

                if receive is not None and receive.done():
                    msg = receive.result()
                    receive = None
                    if msg.type == WSMsgType.BINARY:
                        held.append(msg.data)
                    elif msg.type == WSMsgType.TEXT:
                        held.append(msg.data.encode())
                    elif msg.type in _CLOSE_TYPES or msg.type == WSMsgType.ERROR:
                        raise ClientClosed("closed while connecting")

            outbound = connect.result()
            handed_off = True
            return outbound, held
        finally:
            tasks = [task for task in (connect, receive) if task is not None]
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if (
                not handed_off
                and not connect.cancelled()
                and connect.exception() is None
            ):
                await connect.result().close()

    def stats(self) -> dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "max_sessions": self._limits.max_sessions,
            "started_at": self._started_at.isoformat(),
            "sessions": [s.to_dict() for s in self._sessions.values()],
        }

    async def close_all(self) -> None:
        """Close every live session. Used at shutdown."""
        sessions = list(self._sessions.values())
        for session in sessions:
            await session.close("shutdown")
        if sessions:
            logger.info("Closed sessions at shutdown", count=len(sessions))
