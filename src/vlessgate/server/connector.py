"""Outbound connections to the destination named in a tunnel header."""

from __future__ import annotations

import asyncio
import contextlib
import socket
import time

import structlog

from vlessgate.core.exceptions import ConnectFailure, UnsupportedCommand
from vlessgate.observability.metrics import CONNECT_DURATION
from vlessgate.protocol.datagram import DatagramFramer, frame_datagram
from vlessgate.protocol.header import Command, TunnelRequest

logger = structlog.get_logger()

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_UDP_IDLE_TIMEOUT = 60.0
DEFAULT_READ_SIZE = 64 * 1024
DEFAULT_UDP_QUEUE_SIZE = 128


class Outbound:
    """Byte-oriented handle on an outbound connection.

    read() returns b"" once the destination side has ended.
    close() is idempotent.
    """

    protocol = "tcp"

    async def read(self) -> bytes:
        raise NotImplementedError

    async def write(self, data: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    @property
    def closed(self) -> bool:
        raise NotImplementedError


class StreamOutbound(Outbound):
    """TCP destination."""

    protocol = "tcp"

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_size: int = DEFAULT_READ_SIZE,
        close_timeout: float = 5.0,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._read_size = read_size
        self._close_timeout = close_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> bytes:
        return await self._reader.read(self._read_size)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(OSError, TimeoutError):
            await asyncio.wait_for(self._writer.wait_closed(), timeout=self._close_timeout)


class _DatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue[bytes | None]) -> None:
        self._queue = queue
        self.writable = asyncio.Event()
        self.writable.set()
        self.lost = False
        self.dropped = 0

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("UDP queue full, dropping datagram", size=len(data))

    def error_received(self, exc: Exception) -> None:
        # ICMP errors on a connected socket; the association stays up until idle
        logger.debug("UDP error received", error=str(exc))

    def connection_lost(self, exc: Exception | None) -> None:
        self.lost = True
        self.writable.set()
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(None)

    def pause_writing(self) -> None:
        self.writable.clear()

    def resume_writing(self) -> None:
        self.writable.set()


class DatagramOutbound(Outbound):
    """UDP destination carried as length-prefixed packets.

    There is no close signal for UDP, so read() reports end of stream after
    idle_timeout seconds without traffic in either direction.
    """

    protocol = "udp"

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        protocol: _DatagramProtocol,
        queue: asyncio.Queue[bytes | None],
        idle_timeout: float = DEFAULT_UDP_IDLE_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._protocol = protocol
        self._queue = queue
        self._idle_timeout = idle_timeout
        self._framer = DatagramFramer()
        self._loop = asyncio.get_running_loop()
        self._last_activity = self._loop.time()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> bytes:
        while not self._closed:
            remaining = self._last_activity + self._idle_timeout - self._loop.time()
            if remaining <= 0:
                logger.debug("UDP association idle", idle_timeout=self._idle_timeout)
                return b""
            try:
                packet = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except TimeoutError:
                continue
            if packet is None:
                return b""
            self._last_activity = self._loop.time()
            return frame_datagram(packet)
        return b""

    async def write(self, data: bytes) -> None:
        for packet in self._framer.feed(data):
            await self._protocol.writable.wait()
            if self._closed or self._protocol.lost:
                raise ConnectionResetError("UDP association closed")
            self._transport.sendto(packet)
            self._last_activity = self._loop.time()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._transport.close()
        if self._protocol.dropped:
            logger.debug("UDP association closed", dropped=self._protocol.dropped)


class DestinationConnector:
    """Opens the outbound side of a tunnel.

    Args:
        connect_timeout: Bound on resolution plus connect, in seconds
        udp_idle_timeout: Idle window after which a UDP association ends
        read_size: Largest chunk read from a TCP destination
        udp_queue_size: Datagrams buffered before new ones are dropped
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        udp_idle_timeout: float = DEFAULT_UDP_IDLE_TIMEOUT,
        read_size: int = DEFAULT_READ_SIZE,
        udp_queue_size: int = DEFAULT_UDP_QUEUE_SIZE,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.udp_idle_timeout = udp_idle_timeout
        self.read_size = read_size
        self.udp_queue_size = udp_queue_size

    async def open(self, request: TunnelRequest) -> Outbound:
        if request.command == Command.MUX:
            raise UnsupportedCommand("mux is not supported")

        start = time.perf_counter()
        try:
            if request.command == Command.UDP:
                outbound = await asyncio.wait_for(
                    self._open_datagram(request), timeout=self.connect_timeout
                )
            else:
                outbound = await asyncio.wait_for(
                    self._open_stream(request), timeout=self.connect_timeout
                )
        except TimeoutError as e:
            raise ConnectFailure(f"connect to {request.target} timed out") from e
        except OSError as e:
            raise ConnectFailure(f"connect to {request.target} failed: {e}") from e

        CONNECT_DURATION.observe(time.perf_counter() - start)
        return outbound

    async def _open_stream(self, request: TunnelRequest) -> StreamOutbound:
        reader, writer = await asyncio.open_connection(request.address, request.port)
        sock = writer.get_extra_info("socket")
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return StreamOutbound(reader, writer, read_size=self.read_size)

    async def _open_datagram(self, request: TunnelRequest) -> DatagramOutbound:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(request.address, request.port, type=socket.SOCK_DGRAM)
        if not infos:
            raise ConnectFailure(f"no address for {request.address}")
        family, _, _, _, sockaddr = infos[0]

        queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=self.udp_queue_size)
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _DatagramProtocol(queue),
            remote_addr=sockaddr,
            family=family,
        )
        return DatagramOutbound(
            transport,
            protocol,
            queue,
            idle_timeout=self.udp_idle_timeout,
        )
