"""
miioapi - Python library for controlling miIO smart-home devices.

This library provides async communication with miIO devices over UDP:
the binary frame codec, token-derived encryption and checksums, the
handshake that synchronizes the device clock, and request/reply matching
with retries and timeouts.

Example:
    >>> from miioapi import discover
    >>>
    >>> async def main():
    ...     async with await discover("192.168.1.31", "00112233445566778899aabbccddeeff") as device:
    ...         print(await device.call("get_prop", ["power"]))
"""

from miioapi.config import CallOptions
from miioapi.device import Device, HandshakeResult, SessionState
from miioapi.exceptions import (
    ChecksumError,
    DeviceError,
    MiioError,
    ProtocolError,
    SocketError,
    SocketTimeoutError,
)
from miioapi.models.messages import (
    DeviceToken,
    ErrorResponse,
    Request,
    ResponseError,
    SuccessResponse,
)
from miioapi.protocol.packet import Packet
from miioapi.session import MiioSession
from miioapi.transport import AbstractTransport, MockTransport, UdpTransport

discover = Device.discover

__version__ = "0.1.0"
__all__ = [
    # Client
    "Device",
    "discover",
    "SessionState",
    "HandshakeResult",
    "CallOptions",
    # Protocol
    "MiioSession",
    "Packet",
    # Models
    "DeviceToken",
    "Request",
    "SuccessResponse",
    "ErrorResponse",
    "ResponseError",
    # Exceptions
    "MiioError",
    "SocketError",
    "SocketTimeoutError",
    "ProtocolError",
    "ChecksumError",
    "DeviceError",
    # Transport
    "AbstractTransport",
    "UdpTransport",
    "MockTransport",
    # Version
    "__version__",
]
