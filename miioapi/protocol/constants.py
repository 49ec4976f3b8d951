"""
miIO protocol constants.

Frame layout, handshake markers and timing defaults shared by the codec,
the transport and the device session.
"""

from __future__ import annotations

from typing import Final


class ProtocolConstants:
    """
    miIO protocol constants.

    Contains the frame layout, special markers, network defaults and timing
    values used throughout the protocol implementation.
    """

    # ===== Frame Layout =====

    MAGIC: Final[int] = 0x2131
    """Magic number at the start of every frame."""

    HEADER_SIZE: Final[int] = 32
    """Length of the fixed frame header in bytes."""

    CHECKSUM_SIZE: Final[int] = 16
    """Length of the checksum field in bytes."""

    TOKEN_SIZE: Final[int] = 16
    """Length of the device token in bytes."""

    HEADER_FORMAT: Final[str] = ">HHIII16s"
    """struct format: magic, size, flag, device id, timestamp, checksum."""

    # ===== Field Offsets =====

    MAGIC_OFFSET: Final[int] = 0
    SIZE_OFFSET: Final[int] = 2
    FLAG_OFFSET: Final[int] = 4
    DEVICE_ID_OFFSET: Final[int] = 8
    TIMESTAMP_OFFSET: Final[int] = 12
    CHECKSUM_OFFSET: Final[int] = 16
    PAYLOAD_OFFSET: Final[int] = 32

    # ===== Special Values =====

    HANDSHAKE_FLAG: Final[int] = 0xFFFFFFFF
    """Flag value carried by handshake frames."""

    DATA_FLAG: Final[int] = 0x00000000
    """Flag value carried by every other frame."""

    HANDSHAKE_FILL: Final[int] = 0xFFFFFFFF
    """Device id and timestamp of the outgoing handshake frame."""

    MAX_REQUEST_ID: Final[int] = 0xFFFFFFFF
    """Upper bound for random request ids."""

    # ===== Network =====

    DEFAULT_PORT: Final[int] = 54321
    """UDP port devices listen on."""

    # ===== Timing Constants (in seconds for Python) =====

    MAX_CALL_INTERVAL: Final[int] = 60
    """Seconds of silence after which a call re-handshakes first."""

    DEFAULT_ATTEMPTS: Final[int] = 3
    """Default number of attempts per exchange."""

    DEFAULT_RETRY_DELAY: Final[float] = 3.0
    """Default delay between attempts in seconds."""

    DEFAULT_TIMEOUT: Final[float] = 3.0
    """Default reply timeout in seconds."""


LEGAL_FLAGS: Final[frozenset[int]] = frozenset({
    ProtocolConstants.DATA_FLAG,
    ProtocolConstants.HANDSHAKE_FLAG,
})
"""The only flag values allowed on the wire."""
