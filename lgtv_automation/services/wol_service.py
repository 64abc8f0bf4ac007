"""Wake-on-LAN magic packet sender.

The magic packet is 6 bytes of 0xFF followed by the target MAC address
repeated 16 times (102 bytes), broadcast as one UDP datagram to
255.255.255.255:9. No reply is expected. Retries belong to the caller.
"""

import asyncio
import socket

from lgtv_automation.exceptions import InvalidAddressException, NetworkException
from lgtv_automation.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

WOL_PORT = 9
BROADCAST_ADDRESS = "255.255.255.255"
SYNCHRONIZATION_STREAM = b"\xff" * 6
MAC_REPEAT_COUNT = 16
MAGIC_PACKET_SIZE = len(SYNCHRONIZATION_STREAM) + 6 * MAC_REPEAT_COUNT

_MAC_SEPARATORS = (":", "-", ".", " ")
_HEX_DIGITS = frozenset("0123456789ABCDEF")


def normalize_mac_address(mac_address: str) -> str:
    """Normalize a MAC address to 12 uppercase hex characters.

    Accepts colon, hyphen, dot, space or no delimiters.

    Raises:
        InvalidAddressException: If the result is not exactly 12 hex characters
    """
    cleaned = mac_address
    for separator in _MAC_SEPARATORS:
        cleaned = cleaned.replace(separator, "")
    cleaned = cleaned.upper()

    if len(cleaned) != 12:
        raise InvalidAddressException(mac_address, "MAC address must be 12 hexadecimal characters")
    if not set(cleaned) <= _HEX_DIGITS:
        raise InvalidAddressException(mac_address, "MAC address contains invalid hexadecimal characters")
    return cleaned


def build_magic_packet(mac_address: str) -> bytes:
    """Build the 102-byte magic packet for a MAC address in any common format."""
    mac_bytes = bytes.fromhex(normalize_mac_address(mac_address))
    return SYNCHRONIZATION_STREAM + mac_bytes * MAC_REPEAT_COUNT


def _broadcast(packet: bytes, address: str, port: int) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.sendto(packet, (address, port))


async def send_wake_packet(
    mac_address: str,
    broadcast_address: str = BROADCAST_ADDRESS,
    port: int = WOL_PORT,
) -> None:
    """Broadcast a Wake-on-LAN packet.

    The address is validated before any socket is opened.

    Raises:
        InvalidAddressException: If the MAC address is malformed
        NetworkException: If the datagram could not be sent
    """
    packet = build_magic_packet(mac_address)

    try:
        await asyncio.to_thread(_broadcast, packet, broadcast_address, port)
    except OSError as e:
        log_with_context(
            logger,
            "error",
            "Wake-on-LAN broadcast failed",
            mac_address=mac_address,
            broadcast_address=broadcast_address,
            port=port,
            error=str(e),
            event_type="wol_send_failed",
        )
        raise NetworkException(
            f"Network error: {e}",
            details={"mac_address": mac_address, "broadcast_address": broadcast_address, "port": port},
        ) from e

    log_with_context(
        logger,
        "info",
        "Wake-on-LAN packet sent",
        mac_address=mac_address,
        broadcast_address=broadcast_address,
        port=port,
        event_type="wol_sent",
    )


class WOLService:
    """Injectable wrapper around send_wake_packet."""

    def __init__(self, broadcast_address: str = BROADCAST_ADDRESS, port: int = WOL_PORT):
        self.broadcast_address = broadcast_address
        self.port = port

    async def send_wake_packet(self, mac_address: str) -> None:
        await send_wake_packet(mac_address, self.broadcast_address, self.port)
