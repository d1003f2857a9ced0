import asyncio
import socket

import pytest
import pytest_asyncio

from echo_net.server import EchoServer


class UdpPeerProtocol(asyncio.DatagramProtocol):
    """Raw datagram endpoint that queues everything it receives."""
    def __init__(self):
        self.transport = None
        self.received = asyncio.Queue()

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.received.put_nowait((data, addr))


async def open_udp_peer():
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(UdpPeerProtocol, local_addr=("127.0.0.1", 0))
    return transport, protocol


def scripted_reader(lines):
    """Line reader that returns the given lines, then signals end of input."""
    remaining = iter(lines)

    async def read_line(prompt):
        try:
            return next(remaining)
        except StopIteration:
            raise EOFError

    return read_line


@pytest_asyncio.fixture
async def echo_server():
    """A running server on an ephemeral loopback port, with its console lines collected."""
    console = []
    server = EchoServer(host="127.0.0.1", port=0, display=console.append)
    await server.start()
    serve_task = asyncio.create_task(server.serve())
    server.console = console
    server.serve_task = serve_task
    yield server
    server.stop()
    await asyncio.wait_for(serve_task, timeout=2)


@pytest_asyncio.fixture
async def udp_peer():
    transport, protocol = await open_udp_peer()
    yield transport, protocol
    transport.close()


@pytest.fixture
def free_udp_port():
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
