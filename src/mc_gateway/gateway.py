"""
Main Gateway server - listens on the public port in front of the backend.

Features:
    - Raw splicing to the backend while it answers probes
    - Synthetic status responses while it does not
    - Login attempts trigger a backend start
    - Health aggregation: /health
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from aiohttp import web

from mc_gateway.liveness import LivenessMonitor, Target
from mc_gateway.protocol import (
    HANDSHAKE,
    LEGACY_PING,
    LOGIN_START,
    NEXT_LOGIN,
    NEXT_STATUS,
    NEXT_TRANSFER,
    PING,
    STATUS_REQUEST,
    Handshake,
    LoginStart,
    ProtocolError,
    build_disconnect,
    build_pong,
    build_status_response,
    read_packet,
)
from mc_gateway.splice import Splice
from mc_gateway.state import GatewayState, GatewayStateMachine

if TYPE_CHECKING:
    from mc_gateway.config import GatewayConfig

logger = logging.getLogger(__name__)

# Known-bad protocol so clients show the version name instead of joining
UNSUPPORTED_PROTOCOL = 1

CLIENT_TIMEOUT = 10.0

STATUS_TEXT = {
    GatewayState.STARTING: ("Please wait while the server starts ({secs}s)", "Booting up"),
    GatewayState.STOPPING: ("Please wait while the server shuts down ({secs}s)", "Shutting down"),
    GatewayState.INACTIVE: ("Server inactive. Connect to start", "Inactive"),
    GatewayState.UNKNOWN: ("Unknown status. Please wait", "Unknown"),
}


class Gateway:
    """Idle-aware gateway in front of a single backend.

    Provides:
        - Liveness polling of the backend
        - Lifecycle decisions through a GatewayStateMachine
        - Per-connection choice between splicing and interception
        - Optional /health endpoint

    Example:
        >>> gateway = Gateway(25565, Target("10.0.0.5", 25565))
        >>> gateway.state_machine.subscribe(print)
        >>> await gateway.run()
    """

    def __init__(
        self,
        listen_port: int,
        target: Target,
        *,
        listen_host: str = "0.0.0.0",
        health_port: int | None = None,
        connect_timeout: float = 5.0,
        monitor: LivenessMonitor | None = None,
        state_machine: GatewayStateMachine | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the gateway.

        Args:
            listen_port: Public port to accept clients on (0 picks a free one)
            target: Backend address
            listen_host: Host to bind to
            health_port: Port for the /health endpoint, None to disable
            connect_timeout: Bound on opening the backend connection when splicing
            monitor: Liveness monitor to use instead of a default one
            state_machine: State machine to use instead of a default one
            clock: Monotonic time source for the default components
        """
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.target = target
        self.health_port = health_port
        self.connect_timeout = connect_timeout

        self.monitor = monitor or LivenessMonitor(clock=clock)
        self.state_machine = state_machine or GatewayStateMachine(
            self.monitor.current_snapshot, clock=clock
        )

        self._running = False
        self._server: asyncio.Server | None = None
        self._runner: web.AppRunner | None = None
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._clients: set[asyncio.StreamWriter] = set()
        self._splices: set[Splice] = set()

    @classmethod
    def from_config(cls, config: GatewayConfig, target: Target | None = None) -> Gateway:
        """Build a gateway and its components from configuration."""
        monitor = LivenessMonitor(interval=config.probe_interval, timeout=config.probe_timeout)
        state_machine = GatewayStateMachine(
            monitor.current_snapshot,
            tick_interval=config.tick_interval,
            start_timeout=config.start_timeout,
            stop_timeout=config.stop_timeout,
            idle_timeout=config.idle_timeout,
        )
        return cls(
            config.listen_port,
            target or config.require_target(),
            listen_host=config.listen_host,
            health_port=config.health_port,
            connect_timeout=config.connect_timeout,
            monitor=monitor,
            state_machine=state_machine,
        )

    @property
    def port(self) -> int:
        """Port actually bound by the listener."""
        if self._server and self._server.sockets:
            port: int = self._server.sockets[0].getsockname()[1]
            return port
        return self.listen_port

    async def start(self) -> None:
        """Start probing, evaluating and listening.

        Raises:
            OSError: If the listener or health port cannot be bound. Everything
                started so far is stopped again before the error propagates.
        """
        self._running = True
        self.monitor.start(self.target)

        task = asyncio.create_task(self.state_machine.run())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

        try:
            self._server = await asyncio.start_server(
                self._handle_client, self.listen_host, self.listen_port
            )

            if self.health_port is not None:
                self._runner = web.AppRunner(self.create_app())
                await self._runner.setup()
                site = web.TCPSite(self._runner, self.listen_host, self.health_port)
                await site.start()
        except BaseException:
            await self.stop()
            raise

        logger.info("=" * 60)
        logger.info("MC GATEWAY")
        logger.info("=" * 60)
        logger.info(f"Listening on {self.listen_host}:{self.port}")
        logger.info(f"Target: {self.target}")
        if self.health_port is not None:
            logger.info(f"Health: http://{self.listen_host}:{self.health_port}/health")
        logger.info("=" * 60)

    async def stop(self) -> None:
        """Stop listening and tear down every open connection."""
        if not self._running:
            return
        self._running = False

        self.monitor.close()
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._server:
            self._server.close()
        for splice in list(self._splices):
            await splice.close()
        for writer in list(self._clients):
            writer.close()
        if self._server:
            await self._server.wait_closed()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Gateway stopped")

    async def run(self) -> None:
        """Run the gateway until cancelled."""
        try:
            await self.start()
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    # =========================================================================
    # Client handling
    # =========================================================================

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername") or ("?", 0)
        logger.debug(f"Connection from {peer[0]}")

        # Admission is decided once; a spliced connection never sees the protocol layer
        if self.monitor.current_snapshot().active:
            await self._splice(reader, writer, peer)
            return

        self._clients.add(writer)
        try:
            await self._intercept(reader, writer, peer)
        except (asyncio.IncompleteReadError, asyncio.TimeoutError, ProtocolError) as e:
            logger.debug(f"Client {peer[0]} dropped: {e!r}")
        except ConnectionError as e:
            logger.debug(f"Client connection closed ({peer[0]}): {e!r}")
        except Exception:
            logger.exception(f"Error from {peer[0]}")
        finally:
            self._clients.discard(writer)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    async def _splice(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, peer: Any
    ) -> None:
        try:
            backend_reader, backend_writer = await asyncio.wait_for(
                asyncio.open_connection(self.target.host, self.target.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to connect to remote {self.target}: {e!r}")
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()
            return

        logger.debug(f"Splicing {peer[0]} to {self.target}")
        splice = Splice(reader, writer, backend_reader, backend_writer)
        self._splices.add(splice)
        try:
            await splice.run()
        finally:
            self._splices.discard(splice)

    async def _intercept(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, peer: Any
    ) -> None:
        first = await asyncio.wait_for(reader.readexactly(1), timeout=CLIENT_TIMEOUT)
        if first[0] == LEGACY_PING:
            logger.debug(f"Ignoring legacy ping from {peer[0]}")
            return

        packet_id, packet = await asyncio.wait_for(
            read_packet(reader, first), timeout=CLIENT_TIMEOUT
        )
        if packet_id != HANDSHAKE:
            raise ProtocolError(f"Expected handshake, got packet 0x{packet_id:02x}")
        handshake = Handshake.parse(packet)
        logger.debug(
            f"Handshake from {peer[0]}: protocol={handshake.protocol_version} "
            f"next_state={handshake.next_state}"
        )

        if handshake.next_state == NEXT_STATUS:
            await self._handle_status(reader, writer)
        elif handshake.next_state in (NEXT_LOGIN, NEXT_TRANSFER):
            await self._handle_login(reader, writer, peer)
        else:
            raise ProtocolError(f"Unknown next state {handshake.next_state}")

    async def _handle_status(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Answer a server list ping, then the ping/pong latency check."""
        packet_id, _ = await asyncio.wait_for(read_packet(reader), timeout=CLIENT_TIMEOUT)
        if packet_id != STATUS_REQUEST:
            raise ProtocolError(f"Expected status request, got packet 0x{packet_id:02x}")

        writer.write(build_status_response(self.build_status()))
        await writer.drain()

        packet_id, packet = await asyncio.wait_for(read_packet(reader), timeout=CLIENT_TIMEOUT)
        if packet_id == PING:
            writer.write(build_pong(packet.read(8)))
            await writer.drain()

    async def _handle_login(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, peer: Any
    ) -> None:
        """Refuse the login and ask for the backend to be started."""
        packet_id, packet = await asyncio.wait_for(read_packet(reader), timeout=CLIENT_TIMEOUT)
        if packet_id != LOGIN_START:
            raise ProtocolError(f"Expected login start, got packet 0x{packet_id:02x}")
        login = LoginStart.parse(packet)

        message = self.state_machine.handle_login()
        logger.info(f"Player {login.player_name} ({peer[0]}) connected, starting server")

        writer.write(build_disconnect(message))
        await writer.drain()

    def build_status(self) -> dict[str, Any]:
        """Status payload to answer a server list ping with."""
        cached = self.monitor.current_snapshot().data
        state = self.state_machine.state

        if state == GatewayState.ACTIVE:
            if cached:
                return dict(cached)
            # Active without a payload yet: nothing to forward
            state = GatewayState.UNKNOWN

        text, version_name = STATUS_TEXT[state]
        secs = f"{self.state_machine.seconds_in_state():.0f}"
        status: dict[str, Any] = {
            "version": {"name": version_name, "protocol": UNSUPPORTED_PROTOCOL},
            "players": {"max": 0, "online": 0},
            "description": {"text": text.format(secs=secs)},
        }
        favicon = cached.get("favicon")
        if favicon:
            status["favicon"] = favicon
        return status

    # =========================================================================
    # HTTP Handlers
    # =========================================================================

    def create_app(self) -> web.Application:
        """Create the aiohttp application serving /health."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        return app

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Health check endpoint."""
        snapshot = self.monitor.current_snapshot()
        status = {
            "status": "healthy",
            "state": self.state_machine.state.value,
            "seconds_in_state": round(self.state_machine.seconds_in_state(), 1),
            "backend": {
                "target": str(self.target),
                "active": snapshot.active,
                "observed_at": snapshot.observed_at,
                "players_online": snapshot.players_online,
            },
            "connections": len(self._splices),
        }
        return web.json_response(status)
