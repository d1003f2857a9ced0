import socket
import asyncio
import logging

import psutil

from echo_net.protocol import ResolveError

logger = logging.getLogger(__name__) # Use module-specific logger


async def get_own_ip():
    """Get the local IP address other hosts can use to reach this machine.
       Uses psutil to scan the interfaces that are up."""
    try:
        # Get all network interface addresses
        addresses = psutil.net_if_addrs()
        # Get statistics to check interface status (up/down)
        stats = psutil.net_if_stats()

        candidate_ips = []

        for interface, snics in addresses.items():
            # Check if interface is up and not loopback
            if interface in stats and getattr(stats[interface], 'isup') and interface != 'lo':
                logger.debug(f"Checking interface: {interface} (UP)")
                for snic in snics:
                    if snic.family != socket.AF_INET:
                        continue
                    ip_addr = snic.address
                    # Skip loopback and link-local addresses
                    if ip_addr and not ip_addr.startswith('127.') and not ip_addr.startswith('169.254.'):
                        logger.debug(f"  Found potential external IP: {ip_addr} on {interface}")
                        candidate_ips.append(ip_addr)

        if candidate_ips:
            # The first non-loopback IP is usually the one on the default route.
            selected_ip = candidate_ips[0]
            logger.debug(f"Determined own IP via psutil: {selected_ip}")
            return selected_ip
        logger.warning("psutil found interfaces but no suitable non-loopback IPv4 address.")

    except Exception as e:
        logger.error(f"Error using psutil for IP detection: {e}", exc_info=True)

    logger.warning("Could not determine non-loopback IP, falling back to 127.0.0.1.")
    return "127.0.0.1"


def format_peer(addr):
    """Return 'host:port' for a peer address, bracketing IPv6 hosts."""
    if not addr:
        return "Unknown"
    host, port = addr[0], addr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def same_peer(addr, other):
    """Compare two socket addresses by host and port only.

    IPv6 addresses carry flowinfo/scope_id after the port, which differ
    between what getaddrinfo returns and what recvfrom reports.
    """
    if not addr or not other:
        return False
    return tuple(addr[:2]) == tuple(other[:2])


async def resolve_server_address(hostname, port):
    """
    Resolve a server hostname once, for datagram use.

    Args:
        hostname: Name or literal address of the server
        port: Destination port

    Returns:
        (family, sockaddr): Address family and the socket address to send to

    Raises:
        ResolveError: If the name does not resolve
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolveError(hostname, e) from e

    if not infos:
        raise ResolveError(hostname, "no addresses returned")

    # Prefer IPv4 when the name has both; the server binds IPv4 by default.
    infos.sort(key=lambda info: 0 if info[0] == socket.AF_INET else 1)
    family, _, _, _, sockaddr = infos[0]
    logger.debug(f"Resolved {hostname} to {format_peer(sockaddr)}")
    return family, sockaddr
