"""
Token-bound miIO session: request packing and response unpacking.

A MiioSession holds the device id and token for one device and performs
the cryptographic half of every exchange:

    Request --JSON+NUL--> AES-128-CBC --> Packet(checksum with token)
    Packet --validate checksum--> AES-128-CBC decrypt --> Response

Key material is derived once in the constructor and never changes.
"""

from __future__ import annotations

from miioapi.models.messages import DeviceToken, Request, Response, parse_response
from miioapi.protocol.checksums import append_checksum, ensure_checksum
from miioapi.protocol.constants import ProtocolConstants
from miioapi.protocol.crypto import decrypt, derive_key_iv, encrypt
from miioapi.protocol.packet import Packet

_BLANK_CHECKSUM = bytes(ProtocolConstants.CHECKSUM_SIZE)


class MiioSession:
    """
    Cryptographic session bound to one device.

    Attributes:
        device_id: Identifier assigned by the device.
        token: Shared 16-byte secret.

    Example:
        >>> session = MiioSession(0x0123ABCD, "00112233445566778899aabbccddeeff")
        >>> packet = session.pack_request(Request(id=1, method="get_prop"), 42)
        >>> packet.timestamp
        42
    """

    def __init__(self, device_id: int, token: str | bytes | DeviceToken) -> None:
        """
        Initialize the session and derive key material.

        Args:
            device_id: Device identifier (uint32).
            token: Device token as 32 hex characters or 16 raw bytes.

        Raises:
            ValueError: If the token is invalid.
        """
        self._device_id = device_id
        self._token = DeviceToken.parse(token).value
        self._key, self._iv = derive_key_iv(self._token)

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def token(self) -> bytes:
        return self._token

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def iv(self) -> bytes:
        return self._iv

    def pack_request(self, request: Request, timestamp: int) -> Packet:
        """
        Build a ready-to-send packet for a request.

        Args:
            request: Request to send.
            timestamp: Device timestamp to stamp the packet with.

        Returns:
            Signed Packet carrying the encrypted request.
        """
        encrypted = encrypt(self._key, self._iv, request.to_payload())
        unsigned = Packet(
            device_id=self._device_id,
            timestamp=timestamp,
            checksum=_BLANK_CHECKSUM,
            payload=encrypted,
        )
        return append_checksum(unsigned, self._token)

    def unpack_response(self, packet: Packet) -> Response:
        """
        Extract the device response from a packet.

        The checksum is validated before anything is decrypted.

        Args:
            packet: Received non-handshake packet.

        Returns:
            SuccessResponse or ErrorResponse.

        Raises:
            ChecksumError: If the packet checksum is invalid.
            ProtocolError: If the payload cannot be decrypted or parsed.
        """
        ensure_checksum(packet, self._token)
        decrypted = decrypt(self._key, self._iv, packet.payload)
        return parse_response(decrypted)

    def __repr__(self) -> str:
        return f"MiioSession(device_id=0x{self._device_id:08x})"
