"""Bidirectional relay between a tunnel WebSocket and its outbound connection."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import structlog
from aiohttp import WSMsgType, web

from vlessgate.core.exceptions import RelayIOError
from vlessgate.observability.metrics import BYTES_TRANSFERRED
from vlessgate.server.connector import Outbound
from vlessgate.server.session import Session

logger = structlog.get_logger()

_CLOSE_TYPES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


class RelayPump:
    """Copies bytes in both directions until either side ends.

    Upstream is WebSocket -> outbound, downstream is outbound -> WebSocket.
    Each direction holds one chunk in flight and awaits the writer before
    reading again, so a slow side stalls the other instead of growing memory.
    The first direction to finish ends the relay and the other is cancelled.
    """

    def __init__(
        self,
        session: Session,
        websocket: web.WebSocketResponse,
        outbound: Outbound,
        response_prefix: bytes = b"",
    ) -> None:
        self._session = session
        self._websocket = websocket
        self._outbound = outbound
        self._response_prefix = response_prefix
        self._up_counter = BYTES_TRANSFERRED.labels(direction="up", protocol=outbound.protocol)
        self._down_counter = BYTES_TRANSFERRED.labels(direction="down", protocol=outbound.protocol)

    async def run(self, initial: Iterable[bytes] = ()) -> str:
        """Relay until one side closes.

        Args:
            initial: Payload received before relaying began, written upstream
                in order before any later frame

        Returns:
            "client" if the WebSocket side ended first, "destination" otherwise

        Raises:
            RelayIOError: If either direction failed
        """
        try:
            for chunk in initial:
                if chunk:
                    await self._forward_up(chunk)
        except (OSError, RuntimeError) as e:
            raise RelayIOError(f"upstream write failed: {e}") from e

        session_id = str(self._session.id)
        upstream = asyncio.create_task(self._upstream(), name=f"relay-up-{session_id}")
        downstream = asyncio.create_task(self._downstream(), name=f"relay-down-{session_id}")

        try:
            done, _pending = await asyncio.wait(
                {upstream, downstream}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (upstream, downstream):
                if not task.done():
                    task.cancel()
            await asyncio.gather(upstream, downstream, return_exceptions=True)

        for task in (upstream, downstream):
            if task in done and not task.cancelled() and task.exception() is not None:
                exc = task.exception()
                direction = "upstream" if task is upstream else "downstream"
                raise RelayIOError(f"{direction} failed: {exc}") from exc

        return "client" if upstream in done else "destination"

    async def _forward_up(self, data: bytes) -> None:
        await self._outbound.write(data)
        self._session.bytes_up += len(data)
        self._up_counter.inc(len(data))

    async def _upstream(self) -> None:
        while True:
            msg = await self._websocket.receive()
            if msg.type == WSMsgType.BINARY:
                data = msg.data
            elif msg.type == WSMsgType.TEXT:
                data = msg.data.encode()
            elif msg.type == WSMsgType.ERROR:
                raise ConnectionError(f"websocket error: {msg.data}")
            elif msg.type in _CLOSE_TYPES:
                return
            else:
                continue
            if data:
                await self._forward_up(data)

    async def _downstream(self) -> None:
        prefix = self._response_prefix
        while True:
            data = await self._outbound.read()
            if not data:
                return
            if prefix:
                await self._websocket.send_bytes(prefix + data)
                prefix = b""
            else:
                await self._websocket.send_bytes(data)
            self._session.bytes_down += len(data)
            self._down_counter.inc(len(data))
