import asyncio
import logging
import socket
from enum import Enum

import aioconsole

from echo_net.protocol import (
    PORT, BUFFER_SIZE, BindError, ResolveError, CommunicationError,
    is_exit_command, encode_message, clip_payload, decode_payload
)
from echo_net.utils import resolve_server_address, format_peer, same_peer
from echo_utils.message_validation import check_message_size, safe_close_transport

logger = logging.getLogger(__name__)

PROMPT = "> "


class ClientState(Enum):
    NEW = "new"
    AWAITING_INPUT = "awaiting_input"
    SENDING = "sending"
    AWAITING_REPLY = "awaiting_reply"
    CLOSED = "closed"


async def console_read_line(prompt=PROMPT):
    """Read one line from the terminal without blocking the event loop."""
    return await aioconsole.ainput(prompt)


class EchoClientProtocol(asyncio.DatagramProtocol):
    """Protocol for handing datagrams and endpoint errors to the echo client."""
    def __init__(self, client):
        self.client = client
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport; logger.debug("Client datagram endpoint ready.")
    def datagram_received(self, data, addr): self.client.handle_datagram(data, addr)
    def error_received(self, exc): self.client.handle_error(exc)
    def connection_lost(self, exc): self.client.handle_connection_lost(exc)


class EchoClient:
    """
    Interactive client: forwards operator lines to the server, one at a time.

    Input is read by its own task and handed over through a queue, so the main
    loop waits on "line ready" and "endpoint failed" together instead of
    polling the terminal. After each send the loop waits for exactly one reply
    from the server's address before asking for the next line.
    """
    def __init__(self, server_host, port=PORT, buffer_size=BUFFER_SIZE,
                 reply_timeout=None, read_line=None, display=print):
        self.server_host = server_host
        self.port = port
        self.buffer_size = buffer_size
        self.reply_timeout = reply_timeout
        self.read_line = read_line or console_read_line
        self.display = display

        self.server_address = None
        self.transport = None
        self._state = ClientState.NEW
        self._pending = None # Future for the single outstanding reply
        self._failed = None # Resolved with a CommunicationError if the endpoint fails while idle
        self._lines = asyncio.Queue()
        self._want_line = asyncio.Event()
        self._input_task = None

    @property
    def state(self):
        return self._state

    @property
    def is_closed(self):
        return self.transport is None or self.transport.is_closing()

    @property
    def local_address(self):
        if self.transport is None:
            return None
        return self.transport.get_extra_info("sockname")

    async def start(self):
        """Resolve the server once and open an endpoint on an ephemeral port."""
        if self.transport is not None:
            return

        try:
            family, self.server_address = await resolve_server_address(self.server_host, self.port)
        except ResolveError:
            logger.error(f"Unknown host: {self.server_host}")
            raise

        wildcard = "::" if family == socket.AF_INET6 else "0.0.0.0"
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: EchoClientProtocol(self), local_addr=(wildcard, 0), family=family
            )
        except OSError as e:
            logger.critical(f"Failed to initialize the client socket. Is there a free port? ({e})")
            raise BindError(f"Could not open client endpoint: {e}") from e

        self.transport = transport
        self._failed = loop.create_future()
        self._state = ClientState.AWAITING_INPUT
        logger.info(f"Client bound to {format_peer(self.local_address)}, server is {format_peer(self.server_address)}")

    async def run(self):
        """Forward operator lines until the sentinel, end of input, or a communication error."""
        await self.start()
        self._input_task = asyncio.create_task(self._read_input(), name="EchoClientInput")
        try:
            while not self.is_closed:
                line = await self._next_line()
                if line is None:
                    logger.info("Input stream closed, shutting down client.")
                    break
                await self.send_line(line)
        except CommunicationError as e:
            logger.error(f"A communication error occurred with the server. ({e})")
            raise
        finally:
            self.close()
        logger.info("Client closed.")

    async def send_line(self, line):
        """
        Run one request cycle for a line of operator input.

        Returns:
            The server's reply text, or None if the line was the sentinel
            (the endpoint is closed and no reply is awaited).

        Raises:
            CommunicationError: If sending or receiving fails
        """
        if self.is_closed:
            raise CommunicationError("Client endpoint is closed")

        payload = encode_message(line)

        if is_exit_command(line):
            self._state = ClientState.SENDING
            try:
                self._send(payload)
            finally:
                self.close()
            return None

        fits, message = check_message_size(payload, self.buffer_size)
        if not fits:
            logger.warning(message)

        self._pending = asyncio.get_running_loop().create_future()
        self._state = ClientState.SENDING
        try:
            self._send(payload)
            self._state = ClientState.AWAITING_REPLY
            reply = await asyncio.wait_for(self._pending, timeout=self.reply_timeout)
        except asyncio.TimeoutError as e:
            raise CommunicationError(
                f"No reply from {format_peer(self.server_address)} within {self.reply_timeout}s"
            ) from e
        finally:
            self._pending = None

        self._state = ClientState.AWAITING_INPUT
        text = decode_payload(reply, len(reply))
        self.display(f"Server: {text}")
        return text

    def _send(self, payload):
        try:
            self.transport.sendto(payload, self.server_address)
        except OSError as e:
            raise CommunicationError(f"Send to {format_peer(self.server_address)} failed: {e}") from e

    async def _next_line(self):
        """Wait for the next input line, or fail if the endpoint breaks first."""
        self._state = ClientState.AWAITING_INPUT
        self._want_line.set()
        line_task = asyncio.ensure_future(self._lines.get())
        try:
            done, _ = await asyncio.wait(
                {line_task, self._failed, self._input_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if not line_task.done():
                line_task.cancel()

        if line_task in done:
            return line_task.result()
        if self._failed in done:
            raise self._failed.result()

        # Input task ended without handing over a line.
        self._input_task.result()
        if not self._lines.empty():
            return self._lines.get_nowait()
        return None

    async def _read_input(self):
        """Read one line each time the main loop asks for one. None marks end of input."""
        try:
            while True:
                await self._want_line.wait()
                self._want_line.clear()
                try:
                    line = await self.read_line(PROMPT)
                except EOFError:
                    await self._lines.put(None)
                    return
                await self._lines.put(line)
        except asyncio.CancelledError:
            logger.debug("Client input task cancelled.")

    def handle_datagram(self, data, addr):
        if not same_peer(addr, self.server_address):
            logger.debug(f"Discarding datagram from unexpected sender {format_peer(addr)}")
            return
        if self._pending is None or self._pending.done():
            logger.debug(f"Discarding unsolicited datagram from {format_peer(addr)}")
            return
        self._pending.set_result(clip_payload(data, self.buffer_size))

    def handle_error(self, exc):
        error = CommunicationError(f"Endpoint error: {exc}")
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(error)
        elif self._failed is not None and not self._failed.done():
            self._failed.set_result(error)
        else:
            logger.debug(f"Ignoring endpoint error after failure was recorded: {exc}")

    def handle_connection_lost(self, exc):
        if exc is not None:
            logger.warning(f"Client endpoint lost: {exc}")
        error = CommunicationError(f"Client endpoint closed: {exc}")
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(error)
        elif self._failed is not None and not self._failed.done():
            self._failed.set_result(error)
        self._state = ClientState.CLOSED

    def close(self):
        """Release the endpoint and stop reading input. Safe to call more than once."""
        self._state = ClientState.CLOSED
        if self._input_task is not None and not self._input_task.done():
            self._input_task.cancel()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        safe_close_transport(self.transport)
