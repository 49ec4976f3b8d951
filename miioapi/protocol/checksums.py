"""
Token-keyed packet checksum calculation and validation.

The miIO checksum binds a packet to possession of the device token:
- Build the frame with the raw token written into the checksum field
- Hash the whole frame (header + payload) with md5
- The 16-byte digest replaces the token in the transmitted frame

The checksum is never computed over the real checksum value, so the
same function serves both signing and validation.
"""

from __future__ import annotations

import hmac

from miioapi.exceptions import ChecksumError
from miioapi.protocol.constants import ProtocolConstants
from miioapi.protocol.crypto import md5
from miioapi.protocol.packet import Packet


def calculate_checksum(packet: Packet, token: bytes) -> bytes:
    """
    Calculate the checksum of a packet with the token substituted.

    The packet's own checksum field is ignored.

    Args:
        packet: Packet whose header fields and payload are hashed.
        token: 16-byte device token.

    Returns:
        16-byte checksum.

    Example:
        >>> signed = packet.replace_checksum(calculate_checksum(packet, token))
    """
    if len(token) != ProtocolConstants.TOKEN_SIZE:
        raise ValueError(
            f"Token must be {ProtocolConstants.TOKEN_SIZE} bytes, got {len(token)}"
        )
    return md5(packet.replace_checksum(token).to_bytes())


def validate_checksum(packet: Packet, token: bytes) -> bool:
    """
    Validate that a packet's checksum matches the token-derived value.

    Args:
        packet: Received packet.
        token: 16-byte device token.

    Returns:
        True if checksum is valid, False otherwise.
    """
    expected = calculate_checksum(packet, token)
    return hmac.compare_digest(expected, bytes(packet.checksum))


def append_checksum(packet: Packet, token: bytes) -> Packet:
    """
    Calculate the checksum and return the signed packet.

    Args:
        packet: Packet with any value in its checksum field.
        token: 16-byte device token.

    Returns:
        Copy of the packet carrying the computed checksum.
    """
    return packet.replace_checksum(calculate_checksum(packet, token))


def ensure_checksum(packet: Packet, token: bytes) -> None:
    """
    Raise ChecksumError if the packet's checksum is invalid.

    Args:
        packet: Received packet.
        token: 16-byte device token.

    Raises:
        ChecksumError: If the checksum does not match.
    """
    expected = calculate_checksum(packet, token)
    if not hmac.compare_digest(expected, bytes(packet.checksum)):
        raise ChecksumError(expected=expected, received=bytes(packet.checksum))
