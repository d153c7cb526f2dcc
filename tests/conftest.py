"""Shared fixtures: local destination servers and an in-process gateway."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from vlessgate.core.config import ServerConfig, clear_config
from vlessgate.security.identity import Identity
from vlessgate.server.gateway import GatewayServer
from vlessgate.server.supervisor import ConnectionSupervisor

CLIENT_UUID = UUID("0d3c8f6e-3d5a-4c61-9a53-0b6f3c1b2a77")


@pytest.fixture(autouse=True)
def fresh_config():
    clear_config()
    yield
    clear_config()


@pytest.fixture
def eventually():
    """Poll a predicate until it holds or the timeout expires."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@dataclass
class EchoServer:
    """State recorded by the local TCP echo destination."""

    host: str = "127.0.0.1"
    port: int = 0
    connections: int = 0
    received: bytearray = field(default_factory=bytearray)
    closed: asyncio.Event = field(default_factory=asyncio.Event)


@pytest_asyncio.fixture
async def tcp_server():
    """Factory starting TCP servers on 127.0.0.1 with a random port."""
    servers: list[asyncio.Server] = []

    async def start(handler) -> int:
        server = await asyncio.start_server(handler, "127.0.0.1", 0)
        servers.append(server)
        return server.sockets[0].getsockname()[1]

    yield start

    for server in servers:
        server.close()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(server.wait_closed(), timeout=1.0)


@pytest_asyncio.fixture
async def tcp_echo_server(tcp_server) -> EchoServer:
    state = EchoServer()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        state.connections += 1
        try:
            while data := await reader.read(65536):
                state.received += data
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            state.closed.set()
            writer.close()

    state.port = await tcp_server(handle)
    return state


class _UdpEcho(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.received: list[bytes] = []

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        self.received.append(data)
        assert self.transport is not None
        self.transport.sendto(data, addr)


@pytest_asyncio.fixture
async def udp_echo_server():
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        _UdpEcho, local_addr=("127.0.0.1", 0)
    )
    protocol.port = transport.get_extra_info("sockname")[1]
    yield protocol
    transport.close()


@pytest_asyncio.fixture
async def gateway_client():
    """Factory returning (TestClient, GatewayServer) for an in-process gateway."""
    clients: list[TestClient] = []

    async def start(supervisor: ConnectionSupervisor | None = None, **overrides):
        config = ServerConfig(uuid=CLIENT_UUID, **overrides)
        supervisor = supervisor or ConnectionSupervisor(Identity.from_string(CLIENT_UUID))
        gateway = GatewayServer(config, supervisor)
        client = TestClient(TestServer(gateway.app))
        await client.start_server()
        clients.append(client)
        return client, gateway

    yield start

    for client in clients:
        await client.close()
