"""
Transport layer for miIO protocol communication.

This package provides transport implementations for exchanging datagrams
with miIO devices.

Available transports:
- UdpTransport: asyncio UDP socket connected to one device
- MockTransport: Mock transport for testing without a device

Example:
    >>> from miioapi.transport import UdpTransport
    >>> async with UdpTransport("192.168.1.31") as transport:
    ...     reply = await transport.send(frame, Packet.from_bytes, is_handshake, 3.0)

Testing Example:
    >>> from miioapi.transport import MockTransport
    >>> mock = MockTransport()
    >>> mock.add_response(handshake_reply)
"""

from miioapi.transport.abc import AbstractTransport, PendingReply
from miioapi.transport.mock import MockTransport
from miioapi.transport.udp import UdpTransport

__all__ = [
    "AbstractTransport",
    "PendingReply",
    "UdpTransport",
    "MockTransport",
]
