"""Advertise the server on the local network via mDNS / DNS-SD."""

import ipaddress
import logging
import socket
from typing import Optional

from zeroconf import IPVersion, ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

from .errors import MdnsError

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_heartsock._tcp.local."
INSTANCE_NAME = "❤️🧦"

# Any routable address works; no packet is sent for a UDP connect
_PROBE_ADDR = ("10.255.255.255", 1)


def detect_local_ip() -> ipaddress.IPv4Address:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(_PROBE_ADDR)
        ip = ipaddress.ip_address(sock.getsockname()[0])
    except OSError as e:
        raise MdnsError(f"Unable to detect local IP: {e}") from e
    finally:
        sock.close()
    if not isinstance(ip, ipaddress.IPv4Address):
        raise MdnsError(f"Detected IP ({ip}) is IPv6, which is unsupported for mDNS advertisement")
    logger.info("Detected local IP: %s", ip)
    return ip


def build_service_info(port: int, ip: ipaddress.IPv4Address) -> ServiceInfo:
    return ServiceInfo(
        SERVICE_TYPE,
        f"{INSTANCE_NAME}.{SERVICE_TYPE}",
        addresses=[ip.packed],
        port=port,
        server=f"{ip}.local.",
    )


async def advertise(port: int, ip: Optional[ipaddress.IPv4Address] = None) -> AsyncZeroconf:
    """Register the service and return the live zeroconf handle.

    Close the handle with `withdraw` on shutdown.
    """
    if ip is None:
        ip = detect_local_ip()
    info = build_service_info(port, ip)

    logger.info("Creating mDNS service daemon")
    try:
        azc = AsyncZeroconf(ip_version=IPVersion.V4Only)
    except OSError as e:
        raise MdnsError(f"mDNS service error: {e}") from e
    logger.info(
        "Registering service with daemon: %s: address %s port %s",
        info.name,
        ip,
        port,
    )
    try:
        await azc.async_register_service(info)
    except Exception as e:
        await azc.async_close()
        raise MdnsError(f"mDNS service error: {e}") from e
    return azc


async def withdraw(azc: AsyncZeroconf) -> None:
    try:
        await azc.async_unregister_all_services()
    finally:
        await azc.async_close()
