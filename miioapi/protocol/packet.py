"""
miIO packet encoding and decoding.

Every datagram exchanged with a device is a single frame made of a fixed
32-byte header followed by an opaque payload:

    Offset  Size  Field
    0       2     magic       0x2131
    2       2     size        total frame length (header + payload)
    4       4     flag        0xFFFFFFFF for handshake, 0 otherwise
    8       4     device_id   device-assigned identifier
    12      4     timestamp   device clock/counter
    16      16    checksum    md5 digest, see checksums.py
    32      var   payload     AES-128-CBC ciphertext, empty for handshake

All integers are big-endian. The size field is always derived from the
payload length, never passed in.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from miioapi.exceptions import ProtocolError
from miioapi.protocol.constants import LEGAL_FLAGS, ProtocolConstants

_HEADER = struct.Struct(ProtocolConstants.HEADER_FORMAT)


@dataclass(frozen=True)
class Packet:
    """
    A single miIO frame.

    Attributes:
        device_id: Device identifier (uint32).
        timestamp: Device clock value (uint32).
        checksum: 16-byte checksum field as carried on the wire.
        payload: Encrypted payload, empty for handshake frames.
        flag: 0 for data frames, 0xFFFFFFFF for handshake frames.
    """

    device_id: int
    timestamp: int
    checksum: bytes
    payload: bytes = b""
    flag: int = field(default=ProtocolConstants.DATA_FLAG)

    @property
    def length(self) -> int:
        """Total frame length in bytes."""
        return ProtocolConstants.HEADER_SIZE + len(self.payload)

    @property
    def is_handshake(self) -> bool:
        """
        Check if this is a handshake frame.

        Decided by length alone: a handshake reply is the only frame
        without a payload.
        """
        return self.length == ProtocolConstants.HEADER_SIZE

    def replace_checksum(self, checksum: bytes) -> Packet:
        """Return a copy of this packet with a different checksum field."""
        return Packet(
            device_id=self.device_id,
            timestamp=self.timestamp,
            checksum=checksum,
            payload=self.payload,
            flag=self.flag,
        )

    def to_bytes(self) -> bytes:
        """
        Encode the packet into its wire representation.

        Raises:
            ValueError: If the checksum is not 16 bytes or a header field
                does not fit its width.
        """
        if len(self.checksum) != ProtocolConstants.CHECKSUM_SIZE:
            raise ValueError(
                f"Checksum must be {ProtocolConstants.CHECKSUM_SIZE} bytes, "
                f"got {len(self.checksum)}"
            )
        try:
            header = _HEADER.pack(
                ProtocolConstants.MAGIC,
                self.length,
                self.flag,
                self.device_id,
                self.timestamp,
                bytes(self.checksum),
            )
        except struct.error as e:
            raise ValueError(f"Cannot encode packet: {e}") from e
        return header + bytes(self.payload)

    @classmethod
    def from_bytes(cls, data: bytes | bytearray | memoryview) -> Packet:
        """
        Decode a packet from a received datagram.

        Args:
            data: Raw datagram bytes.

        Returns:
            Decoded Packet.

        Raises:
            ProtocolError: If the datagram is shorter than a header, the
                magic is wrong, the declared size differs from the actual
                length, or the flag is not one of the two legal values.
        """
        raw = bytes(data)
        if len(raw) < ProtocolConstants.HEADER_SIZE:
            raise ProtocolError(
                f"Packet too short: {len(raw)} bytes, "
                f"header is {ProtocolConstants.HEADER_SIZE}"
            )

        magic, size, flag, device_id, timestamp, checksum = _HEADER.unpack_from(raw)

        if magic != ProtocolConstants.MAGIC:
            raise ProtocolError(f"Invalid magic: 0x{magic:04x}")

        if size != len(raw):
            raise ProtocolError(
                f"Invalid packet size, expected {size} got {len(raw)}"
            )

        if flag not in LEGAL_FLAGS:
            raise ProtocolError(f"Invalid flag: 0x{flag:08x}")

        return cls(
            device_id=device_id,
            timestamp=timestamp,
            checksum=checksum,
            payload=raw[ProtocolConstants.PAYLOAD_OFFSET:],
            flag=flag,
        )

    def __repr__(self) -> str:
        kind = "handshake" if self.is_handshake else f"payload={len(self.payload)} bytes"
        return (
            f"Packet(device_id=0x{self.device_id:08x}, "
            f"timestamp={self.timestamp}, {kind})"
        )


HANDSHAKE_PACKET = Packet(
    device_id=ProtocolConstants.HANDSHAKE_FILL,
    timestamp=ProtocolConstants.HANDSHAKE_FILL,
    checksum=b"\xff" * ProtocolConstants.CHECKSUM_SIZE,
    payload=b"",
    flag=ProtocolConstants.HANDSHAKE_FLAG,
)
"""The fixed all-ones frame that opens a session."""


def encode_packet(packet: Packet) -> bytes:
    """Encode a packet into wire bytes."""
    return packet.to_bytes()


def decode_packet(data: bytes | bytearray | memoryview) -> Packet:
    """Decode wire bytes into a packet. See Packet.from_bytes."""
    return Packet.from_bytes(data)


def is_handshake(packet: Packet) -> bool:
    """Check if a packet is a handshake frame (empty payload)."""
    return packet.is_handshake
