import logging

logger = logging.getLogger(__name__)

# --- Protocol Constants ---
PORT = 9876 # Well-known port: the server binds it, the client targets it
BUFFER_SIZE = 256 # Receive buffer capacity in bytes; longer datagrams are clipped
EXIT_COMMAND = "exit" # Reserved sentinel, compared case-insensitively
ENCODING = "utf-8"
# --- End Protocol Constants ---


class EndpointError(OSError):
    """Base class for faults on a datagram endpoint."""


class BindError(EndpointError):
    """The endpoint could not be created or bound."""


class ResolveError(EndpointError):
    """The server hostname could not be resolved to an address."""

    def __init__(self, hostname, reason=None):
        self.hostname = hostname
        message = f"Unknown host: {hostname}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class CommunicationError(EndpointError):
    """A send or receive failed on an established endpoint."""


def is_exit_command(text: str) -> bool:
    """Return True if the text is the shutdown sentinel, in any letter casing."""
    return text.lower() == EXIT_COMMAND


def encode_message(text: str) -> bytes:
    return text.encode(ENCODING)


def clip_payload(data: bytes, capacity: int = BUFFER_SIZE) -> bytes:
    """
    Apply the receive buffer capacity to an incoming datagram.

    Args:
        data: The raw datagram as delivered by the transport
        capacity: Receive buffer size in bytes

    Returns:
        At most the first `capacity` bytes of the datagram. Clipping is
        silent; the caller decides whether to log it.
    """
    if len(data) > capacity:
        logger.debug(f"Clipping {len(data)} byte datagram to {capacity} bytes")
        return bytes(data[:capacity])
    return bytes(data)


def decode_payload(data: bytes, length: int = None) -> str:
    """
    Decode exactly `length` bytes of a payload as text.

    Never decode the full buffer: only the received length is message content.
    A multi-byte character cut by clipping becomes U+FFFD instead of raising.
    """
    if length is None:
        length = len(data)
    return bytes(data[:length]).decode(ENCODING, errors="replace")
