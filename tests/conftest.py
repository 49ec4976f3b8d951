"""Shared fixtures: a simulated miIO device answering through MockTransport."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest

from miioapi.protocol.checksums import append_checksum, validate_checksum
from miioapi.protocol.constants import ProtocolConstants
from miioapi.protocol.crypto import decrypt, encrypt
from miioapi.protocol.packet import Packet
from miioapi.session import MiioSession
from miioapi.transport.mock import MockTransport

TOKEN_HEX = "00112233445566778899aabbccddeeff"
TOKEN = bytes.fromhex(TOKEN_HEX)
DEVICE_ID = 0x0123ABCD

FAST_OPTIONS = {"attempts": 3, "delay": 0, "timeout": 0.05}


class FakeDevice:
    """
    Simulated device: answers handshakes and decrypts/answers requests.

    The handler receives the decoded request dict and returns the reply
    body; the request id is filled in unless the handler sets one.
    """

    def __init__(self, device_id: int = DEVICE_ID, token: bytes = TOKEN, timestamp: int = 1000) -> None:
        self.device_id = device_id
        self.token = token
        self.timestamp = timestamp
        self.session = MiioSession(device_id, token)
        self.handshakes = 0
        self.requests: list[dict[str, Any]] = []
        self.request_packets: list[Packet] = []
        self.bad_checksums = 0
        self.drop_requests = 0
        self.drop_handshakes = 0
        self.handler: Callable[[dict[str, Any]], dict[str, Any] | list[bytes]] = lambda req: {"result": ["ok"]}

    def handshake_reply(self) -> bytes:
        return Packet(
            device_id=self.device_id,
            timestamp=self.timestamp,
            checksum=bytes(ProtocolConstants.CHECKSUM_SIZE),
            flag=ProtocolConstants.HANDSHAKE_FLAG,
        ).to_bytes()

    def reply(self, body: dict[str, Any], timestamp: int | None = None) -> bytes:
        encrypted = encrypt(self.session.key, self.session.iv, json.dumps(body).encode("utf-8"))
        packet = Packet(
            device_id=self.device_id,
            timestamp=self.timestamp if timestamp is None else timestamp,
            checksum=bytes(ProtocolConstants.CHECKSUM_SIZE),
            payload=encrypted,
        )
        return append_checksum(packet, self.token).to_bytes()

    def respond(self, datagram: bytes) -> list[bytes]:
        packet = Packet.from_bytes(datagram)
        self.timestamp += 1

        if packet.is_handshake:
            self.handshakes += 1
            if self.drop_handshakes:
                self.drop_handshakes -= 1
                return []
            return [self.handshake_reply()]

        if not validate_checksum(packet, self.token):
            self.bad_checksums += 1
            return []

        payload = decrypt(self.session.key, self.session.iv, packet.payload)
        request = json.loads(payload.rstrip(b"\x00").decode("utf-8"))
        self.requests.append(request)
        self.request_packets.append(packet)

        if self.drop_requests:
            self.drop_requests -= 1
            return []

        body = self.handler(request)
        if isinstance(body, list):
            return body
        return [self.reply({"id": request["id"], **body})]


@pytest.fixture
def fake_device():
    """Create a simulated device."""
    return FakeDevice()


@pytest.fixture
def mock_transport(fake_device):
    """Create a MockTransport answered by the simulated device."""
    transport = MockTransport(address=("192.168.1.31", ProtocolConstants.DEFAULT_PORT))
    transport.set_response_callback(fake_device.respond)
    return transport
