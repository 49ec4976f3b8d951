"""
Mock transport for testing.

This module provides a mock transport implementation that allows testing
the miIO client without a device on the network. Replies can be queued
in advance or generated by a callback from each written datagram, and are
delivered through the same reply-matching path as the UDP transport.

Example:
    >>> from miioapi.transport import MockTransport
    >>> from miioapi.protocol import HANDSHAKE_PACKET, Packet
    >>>
    >>> mock = MockTransport()
    >>> mock.add_response(Packet(device_id=0x1234, timestamp=100,
    ...                          checksum=bytes(16), flag=0xFFFFFFFF).to_bytes())
    >>> device = await Device.discover("192.168.1.31", TOKEN, transport=mock)
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Iterable

from miioapi.exceptions import SocketError
from miioapi.protocol.constants import ProtocolConstants
from miioapi.transport.abc import AbstractTransport

ResponseCallback = Callable[[bytes], "bytes | Iterable[bytes] | None"]


class MockTransport(AbstractTransport):
    """
    Mock transport for testing without a device.

    Each write consumes one entry from the reply queue (an entry may hold
    zero, one or several datagrams). If a response callback is set, it is
    consulted first; returning None falls back to the queue. Replies are
    delivered on the next event loop iteration, like real datagrams.

    Attributes:
        written_data: List of all datagrams written to the transport.
        connect_count: Number of times the socket was actually connected.

    Example:
        >>> mock = MockTransport()
        >>> mock.add_drop()                 # first request is lost
        >>> mock.add_response(reply_bytes)  # second one is answered
    """

    def __init__(
        self,
        address: tuple[str, int] = ("mock", ProtocolConstants.DEFAULT_PORT),
    ) -> None:
        """
        Initialize the mock transport.

        Args:
            address: Remote address reported by the mock.
        """
        super().__init__()
        self._address = address
        self._is_connected = False
        self._is_closed = False
        self._responses: deque[tuple[bytes, ...]] = deque()
        self._written_data: list[bytes] = []
        self._response_callback: ResponseCallback | None = None
        self._write_failures: deque[Exception] = deque()
        self.connect_count = 0
        self.close_count = 0

    @property
    def is_connected(self) -> bool:
        return self._is_connected and not self._is_closed

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    @property
    def address(self) -> tuple[str, int]:
        return self._address

    @property
    def written_data(self) -> list[bytes]:
        """Get all datagrams written to the transport."""
        return self._written_data.copy()

    @property
    def last_written(self) -> bytes | None:
        """Get the most recently written datagram."""
        return self._written_data[-1] if self._written_data else None

    def add_response(self, *datagrams: bytes) -> None:
        """
        Queue the reply to the next unanswered write.

        Args:
            *datagrams: Datagrams delivered, in order, after that write.
                No datagrams means the write goes unanswered.
        """
        self._responses.append(tuple(datagrams))

    def add_responses(self, *responses: bytes) -> None:
        """
        Queue single-datagram replies for several consecutive writes.

        Args:
            *responses: One datagram per write.
        """
        for response in responses:
            self._responses.append((response,))

    def add_drop(self, count: int = 1) -> None:
        """Leave the next count writes unanswered."""
        for _ in range(count):
            self._responses.append(())

    def fail_next_write(self, error: Exception | None = None) -> None:
        """Make the next write raise a SocketError (or the given error)."""
        self._write_failures.append(error or SocketError("Mock send failure"))

    def set_response_callback(self, callback: ResponseCallback | None) -> None:
        """
        Set a callback to dynamically generate replies.

        The callback receives the written datagram and returns a reply
        datagram, an iterable of datagrams, or None to use the queue.

        Args:
            callback: Function that takes written bytes and returns replies.
        """
        self._response_callback = callback

    def feed(self, datagram: bytes) -> None:
        """Deliver a datagram immediately, as if it had just arrived."""
        self._datagram_received(datagram)

    def inject_error(self, error: Exception) -> None:
        """Deliver a socket-level error to all outstanding sends."""
        self._error_received(error)

    def clear(self) -> None:
        """Clear all written data and pending replies."""
        self._written_data.clear()
        self._responses.clear()

    async def connect(self) -> None:
        """Connect the mock transport."""
        if self._is_closed:
            raise SocketError("Transport closed")
        if self._is_connected:
            return
        self.connect_count += 1
        self._is_connected = True

    async def _write(self, data: bytes) -> None:
        if self._is_closed:
            raise SocketError("Transport closed")
        if self._write_failures:
            raise self._write_failures.popleft()

        self._written_data.append(bytes(data))

        replies: Iterable[bytes] | None = None
        if self._response_callback is not None:
            result = self._response_callback(bytes(data))
            if isinstance(result, (bytes, bytearray)):
                replies = (bytes(result),)
            else:
                replies = result
        if replies is None and self._responses:
            replies = self._responses.popleft()

        loop = asyncio.get_running_loop()
        for reply in replies or ():
            loop.call_soon(self._datagram_received, bytes(reply))

    async def close(self) -> None:
        """Close the mock transport and fail outstanding sends."""
        self.close_count += 1
        if self._is_closed:
            return
        self._is_closed = True
        self._is_connected = False
        self._fail_pending(SocketError("Transport closed"))

    def assert_written(self, expected: bytes, index: int = -1) -> None:
        """
        Assert that a specific datagram was written.

        Args:
            expected: Expected bytes.
            index: Index in written_data list (-1 for last).

        Raises:
            AssertionError: If data doesn't match.
        """
        if not self._written_data:
            raise AssertionError("No data written to mock transport")

        actual = self._written_data[index]
        if actual != expected:
            raise AssertionError(f"Written data mismatch: expected {expected!r}, got {actual!r}")

    def assert_write_count(self, expected: int) -> None:
        """
        Assert number of write operations.

        Args:
            expected: Expected number of writes.

        Raises:
            AssertionError: If count doesn't match.
        """
        actual = len(self._written_data)
        if actual != expected:
            raise AssertionError(f"Write count mismatch: expected {expected}, got {actual}")
