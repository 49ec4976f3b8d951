"""
Protocol layer for miIO communication.

This module contains the low-level protocol handling:
- Frame layout and protocol constants
- Packet encoding/decoding
- md5 / AES-128-CBC primitives
- Token-keyed checksum calculation and validation
"""

from miioapi.protocol.checksums import (
    append_checksum,
    calculate_checksum,
    ensure_checksum,
    validate_checksum,
)
from miioapi.protocol.constants import ProtocolConstants
from miioapi.protocol.crypto import decrypt, derive_key_iv, encrypt, md5
from miioapi.protocol.packet import (
    HANDSHAKE_PACKET,
    Packet,
    decode_packet,
    encode_packet,
    is_handshake,
)

__all__ = [
    # Constants
    "ProtocolConstants",
    # Packets
    "Packet",
    "HANDSHAKE_PACKET",
    "encode_packet",
    "decode_packet",
    "is_handshake",
    # Crypto
    "md5",
    "derive_key_iv",
    "encrypt",
    "decrypt",
    # Checksums
    "calculate_checksum",
    "validate_checksum",
    "append_checksum",
    "ensure_checksum",
]
