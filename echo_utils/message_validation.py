from typing import Tuple, Optional
import logging

from echo_net.protocol import BUFFER_SIZE

logger = logging.getLogger(__name__)


def check_message_size(payload: bytes, capacity: int = BUFFER_SIZE) -> Tuple[bool, str]:
    """
    Check whether a payload fits the peer's receive buffer.

    Args:
        payload: Encoded message bytes
        capacity: Receive buffer size in bytes

    Returns:
        (fits, message): Tuple containing whether the payload fits and a descriptive message
    """
    if payload is None:
        return False, "No payload provided"

    size = len(payload)
    if size > capacity:
        return False, f"Message size ({size} bytes) exceeds buffer capacity ({capacity} bytes) and will be truncated"

    return True, f"Message size ({size} bytes) is within buffer capacity"


def safe_close_transport(transport: Optional[object]) -> None:
    """
    Close a datagram transport, catching and logging any exceptions.

    Args:
        transport: The transport to close, or None if there is none
    """
    if transport is None:
        logger.debug("Attempted to close None transport - ignoring")
        return

    try:
        if transport.is_closing():
            return
        transport.close()
        logger.debug(f"Closed transport: {transport}")
    except Exception as e:
        logger.warning(f"Error closing transport: {e}", exc_info=True)
