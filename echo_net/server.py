import asyncio
import logging
from enum import Enum

from echo_net.protocol import (
    PORT, BUFFER_SIZE, BindError, is_exit_command, clip_payload, decode_payload
)
from echo_net.utils import format_peer
from echo_utils.message_validation import safe_close_transport

logger = logging.getLogger(__name__)


class ServerState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    STOPPED = "stopped"


class EchoServerProtocol(asyncio.DatagramProtocol):
    """Protocol for handing incoming datagrams to the echo server."""
    def __init__(self, server):
        self.server = server
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport; logger.debug("Server datagram endpoint ready.")
    def datagram_received(self, data, addr):
        # Handled inline, not in a task: one datagram is fully processed before the next callback runs.
        self.server.handle_datagram(data, addr)
    def error_received(self, exc): self.server.handle_error(exc)
    def connection_lost(self, exc): self.server.handle_connection_lost(exc, self.transport)


class EchoServer:
    """
    Echo server on a single unconnected datagram endpoint.

    Every datagram is answered to the address it came from; nothing about the
    sender is kept once the reply has been sent. The sentinel message stops
    the server without a reply.
    """
    def __init__(self, host="0.0.0.0", port=PORT, buffer_size=BUFFER_SIZE, display=print):
        self.host = host
        self.port = port
        self.buffer_size = buffer_size
        self.display = display
        self.transport = None
        self._state = ServerState.IDLE
        self._stopped = asyncio.Event()

    @property
    def state(self):
        return self._state

    @property
    def is_running(self):
        return self._state in (ServerState.LISTENING, ServerState.PROCESSING)

    @property
    def local_address(self):
        """The (host, port) the endpoint is bound to, or None when not bound."""
        if self.transport is None:
            return None
        return self.transport.get_extra_info("sockname")

    async def start(self):
        """Bind the endpoint. Does nothing while bound; binds again after a stop."""
        if self.transport is not None:
            return

        self._stopped.clear()

        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: EchoServerProtocol(self), local_addr=(self.host, self.port)
            )
        except OSError as e:
            logger.critical(f"Failed to start the server. Is the port already taken? ({e})")
            raise BindError(f"Could not bind UDP port {self.port}: {e}") from e

        self.transport = transport
        self._state = ServerState.LISTENING
        bound_port = self.local_address[1]
        logger.info(f"Now listening on port {bound_port}!")

    async def serve(self):
        """Start if needed and keep servicing datagrams until the server stops."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            self.stop()
        logger.info("Server stopped.")

    def handle_datagram(self, data, addr):
        """Run one receive->echo cycle for a datagram from `addr`."""
        if self._state != ServerState.LISTENING:
            logger.debug(f"Ignoring datagram from {format_peer(addr)} in state {self._state.value}")
            return

        self._state = ServerState.PROCESSING
        try:
            payload = clip_payload(data, self.buffer_size)
            message = decode_payload(payload, len(payload))

            if is_exit_command(message):
                logger.info(f"Exit command received from {format_peer(addr)}, shutting down.")
                self.stop()
                return

            self.display(f"Client: {message}")
            try:
                # The reply goes to the address this datagram came from, sized by what was received.
                self.transport.sendto(payload, addr)
            except OSError as e:
                logger.error(f"Communication error. Is there a problem with the client? ({format_peer(addr)}: {e})")
        finally:
            if self._state == ServerState.PROCESSING:
                self._state = ServerState.LISTENING

    def handle_error(self, exc):
        # UDP has no per-sender state to tear down, so the endpoint keeps listening.
        logger.error(f"Communication error. Is there a problem with the client? ({exc})")

    def handle_connection_lost(self, exc, transport=None):
        if self.transport is not None and transport is not self.transport:
            # Late notice from an endpoint closed before a restart.
            return
        if exc is not None:
            logger.error(f"Server endpoint lost: {exc}")
        self.transport = None
        self._state = ServerState.STOPPED
        self._stopped.set()

    def stop(self):
        """Close the endpoint and mark the server stopped. Safe to call more than once."""
        if self._state != ServerState.STOPPED:
            logger.debug("Stopping echo server...")
        self._state = ServerState.STOPPED
        safe_close_transport(self.transport)
        self.transport = None
        self._stopped.set()
