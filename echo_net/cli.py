import asyncio
import logging
import sys

from echo_net.client import EchoClient
from echo_net.server import EchoServer
from echo_net.protocol import EndpointError
from echo_net.utils import get_own_ip
from echo_utils.config import load_config

logger = logging.getLogger(__name__)


def setup_logging():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout
    )


async def client_main(config_path=None):
    """Run the interactive client against the configured server."""
    config = await load_config(config_path)
    logging.getLogger().setLevel(config["log_level"])

    client = EchoClient(
        config["server_host"],
        port=config["port"],
        buffer_size=config["buffer_size"],
        reply_timeout=config["reply_timeout"],
    )
    try:
        await client.run()
    except asyncio.CancelledError:
        logger.info("Client shutdown triggered...")
    finally:
        client.close()


async def server_main(config_path=None):
    """Run the echo server until a client sends the exit command."""
    config = await load_config(config_path)
    logging.getLogger().setLevel(config["log_level"])

    server = EchoServer(
        host=config["bind_host"],
        port=config["port"],
        buffer_size=config["buffer_size"],
    )
    try:
        await server.start()
        own_ip = await get_own_ip()
        logger.info(f"Clients on the network can reach this server at {own_ip}:{server.local_address[1]}")
        await server.serve()
    except asyncio.CancelledError:
        logger.info("Server shutdown triggered...")
    finally:
        server.stop()


def run_client():
    setup_logging()
    try:
        asyncio.run(client_main())
    except KeyboardInterrupt:
        print("\nClient shutting down...")
    except EndpointError as e:
        logger.critical(f"Client stopped: {e}")
        sys.exit(1)


def run_server():
    setup_logging()
    try:
        asyncio.run(server_main())
    except KeyboardInterrupt:
        print("\nServer shutting down...")
    except EndpointError as e:
        logger.critical(f"Server stopped: {e}")
        sys.exit(1)
