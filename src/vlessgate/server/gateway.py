"""HTTP front end: accepts tunnel WebSocket upgrades and hands them to the supervisor."""

from __future__ import annotations

import contextlib
import ssl
import weakref
from pathlib import Path

import structlog
from aiohttp import web

from vlessgate.core.config import GatewayConfig, ServerConfig, get_config
from vlessgate.core.exceptions import ConfigurationError
from vlessgate.observability.metrics import generate_metrics, get_content_type
from vlessgate.security.identity import Identity
from vlessgate.server.connector import DestinationConnector
from vlessgate.server.supervisor import ConnectionSupervisor, SupervisorLimits

logger = structlog.get_logger()

NOT_FOUND = "Not Found\n"


def build_supervisor(
    config: ServerConfig,
    settings: GatewayConfig | None = None,
) -> ConnectionSupervisor:
    """Create a supervisor from the server config and the VLESSGATE_* settings."""
    settings = settings or get_config()
    timeouts = settings.timeouts
    resources = settings.resources
    connector = DestinationConnector(
        connect_timeout=timeouts.connect_timeout,
        udp_idle_timeout=timeouts.udp_idle_timeout,
        read_size=resources.read_size,
        udp_queue_size=resources.udp_queue_size,
    )
    limits = SupervisorLimits(
        max_sessions=resources.max_sessions,
        header_timeout=timeouts.header_timeout,
        header_max_frames=resources.header_max_frames,
    )
    return ConnectionSupervisor(Identity.from_string(config.uuid), connector, limits)


class GatewayServer:
    """aiohttp server exposing the tunnel WebSocket path."""

    def __init__(
        self,
        config: ServerConfig,
        supervisor: ConnectionSupervisor | None = None,
    ) -> None:
        self.config = config
        settings = get_config()
        self.supervisor = supervisor or build_supervisor(config, settings)
        # settings are read once; later VLESSGATE_* changes do not apply
        self._ping_interval = settings.timeouts.ping_interval
        self._ws_max_msg_size = settings.resources.ws_max_msg_size
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._ssl_context: ssl.SSLContext | None = None
        self._websockets: weakref.WeakSet[web.WebSocketResponse] = weakref.WeakSet()

    @property
    def app(self) -> web.Application:
        if self._app is None:
            self._app = self.create_app()
        return self._app

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_get(self.config.ws_path, self._handle_tunnel)
        if self.config.metrics_enabled:
            app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_route("*", "/{path:.*}", self._handle_not_found)
        return app

    def _create_ssl_context(self) -> ssl.SSLContext | None:
        """Create SSL context from certificate files.

        Raises:
            ConfigurationError: If only one of the paths is set, or the
                files are missing or cannot be loaded
        """
        if not self.config.cert_path and not self.config.key_path:
            return None
        if not self.config.cert_path or not self.config.key_path:
            raise ConfigurationError("TLS needs both a certificate and a key")

        cert_path = Path(self.config.cert_path)
        key_path = Path(self.config.key_path)

        if not cert_path.exists():
            logger.error("Certificate file not found", path=str(cert_path))
            raise ConfigurationError(f"Certificate file not found: {cert_path}")

        if not key_path.exists():
            logger.error("Key file not found", path=str(key_path))
            raise ConfigurationError(f"Key file not found: {key_path}")

        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            ssl_context.load_cert_chain(str(cert_path), str(key_path))
        except (OSError, ssl.SSLError) as e:
            logger.error("Failed to create SSL context", error=str(e))
            raise ConfigurationError(f"Cannot load TLS certificate: {e}") from e
        ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
        logger.info("TLS context created", cert=str(cert_path))
        return ssl_context

    async def start(self) -> None:
        """Bind the listener.

        ConfigurationError (bad TLS files) and OSError (port in use) are fatal
        to the caller.
        """
        self._ssl_context = self._create_ssl_context()
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        site = web.TCPSite(
            self._runner,
            self.config.host,
            self.config.port,
            ssl_context=self._ssl_context,
        )
        await site.start()
        logger.info(
            "Gateway started",
            host=self.config.host,
            port=self.config.port,
            tls=self._ssl_context is not None,
            metrics=self.config.metrics_enabled,
        )

    async def stop(self) -> None:
        logger.info("Stopping gateway...")
        await self.supervisor.close_all()

        for ws in list(self._websockets):
            with contextlib.suppress(Exception):
                await ws.close()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Gateway stopped")

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.Response(text="Hello world!\n")

    async def _handle_not_found(self, request: web.Request) -> web.Response:
        return web.Response(text=NOT_FOUND, status=404)

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _handle_tunnel(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(
            heartbeat=self._ping_interval,
            max_msg_size=self._ws_max_msg_size,
        )
        # plain GETs on the tunnel path look like any unknown path
        if not ws.can_prepare(request).ok:
            return web.Response(text=NOT_FOUND, status=404)

        await ws.prepare(request)
        self._websockets.add(ws)
        try:
            await self.supervisor.handle(ws, peer=request.remote or "unknown")
        finally:
            self._websockets.discard(ws)
        return ws
