"""
Abstract transport interface for miIO protocol communication.

This module defines the abstract base class for all transport implementations.
A transport is bound to exactly one remote device address and correlates
outgoing datagrams with incoming replies.

The transport layer is responsible for:
- Connecting/closing the underlying socket
- Sending raw datagrams
- Matching replies to waiting senders (replies arrive in any order)
- Timeout handling

Matching is implemented here, once, on top of three primitives each
implementation provides: connect(), _write() and close(). Implementations
feed received datagrams and socket errors back through
_datagram_received() and _error_received().

Implementations:
- UdpTransport: asyncio datagram endpoint
- MockTransport: in-memory transport for testing without a device
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from miioapi.exceptions import ProtocolError, SocketError, SocketTimeoutError

if TYPE_CHECKING:
    from types import TracebackType

# Module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


class PendingReply(Generic[T]):
    """
    One outstanding send waiting for a matching reply.

    Every received datagram is parsed and offered to match(). The first
    parsed value that matches resolves the future. Datagrams that parse()
    rejects with ProtocolError are dropped like any other non-matching
    datagram; the last such error is kept in last_error. Any other parse
    or match failure fails the future.
    """

    __slots__ = ("parse", "match", "future", "last_error")

    def __init__(
        self,
        parse: Callable[[bytes], T],
        match: Callable[[T], bool],
        future: asyncio.Future[T],
    ) -> None:
        self.parse = parse
        self.match = match
        self.future = future
        self.last_error: ProtocolError | None = None

    def feed(self, datagram: bytes) -> None:
        if self.future.done():
            return
        try:
            parsed = self.parse(datagram)
            matched = self.match(parsed)
        except ProtocolError as e:
            logger.debug("Dropping undecodable datagram (%d bytes): %s", len(datagram), e)
            self.last_error = e
            return
        except Exception as e:
            self.future.set_exception(e)
            return
        if matched:
            self.future.set_result(parsed)

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class AbstractTransport(ABC):
    """
    Abstract base class for miIO transports.

    Transports support async context manager protocol for safe resource
    management:

        async with UdpTransport("192.168.1.31") as transport:
            reply = await transport.send(frame, Packet.from_bytes, is_handshake, 3.0)

    Several send() calls may be outstanding at once; each one receives
    every datagram and resolves independently.

    Attributes:
        is_connected: Whether the socket is bound to the remote peer.
        is_closed: Whether close() has been called.
        address: Remote (host, port).
    """

    def __init__(self) -> None:
        self._pending: list[PendingReply[Any]] = []

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """
        Check if the transport is connected to its remote peer.

        Returns:
            True if datagrams can be sent, False otherwise.
        """
        ...

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Check if the transport has been closed for good."""
        ...

    @property
    @abstractmethod
    def address(self) -> tuple[str, int]:
        """
        Get the remote address.

        Returns:
            (host, port) tuple of the device.
        """
        ...

    @abstractmethod
    async def connect(self) -> None:
        """
        Connect the transport to its remote peer.

        Idempotent: concurrent and repeated calls share one connection.

        Raises:
            SocketError: If the socket cannot be opened or is closed.
        """
        ...

    @abstractmethod
    async def _write(self, data: bytes) -> None:
        """
        Send one datagram.

        Raises:
            SocketError: If the transport is closed or the send fails.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the transport.

        Releases the socket and fails all outstanding sends. Safe to call
        multiple times; never raises.
        """
        ...

    @property
    def pending_count(self) -> int:
        """Number of sends currently waiting for a reply."""
        return len(self._pending)

    async def send(
        self,
        data: bytes,
        parse: Callable[[bytes], T],
        match: Callable[[T], bool],
        timeout: float | None = None,
    ) -> T:
        """
        Send a datagram and wait for a matching reply.

        Because datagrams may arrive in any order, each received datagram is
        parsed with parse() and checked with match(). Datagrams that do not
        match, or that parse() rejects with ProtocolError, are dropped and
        the wait continues.

        Args:
            data: Datagram to send.
            parse: Converts a received datagram into a value.
            match: Returns True if the parsed value answers this send.
            timeout: Seconds to wait for a match. None or 0 waits forever.

        Returns:
            The first parsed value for which match() returned True.

        Raises:
            SocketTimeoutError: If no matching reply arrives in time. Chained
                to the last undecodable datagram error, if any.
            SocketError: If connecting, sending or receiving fails.
        """
        if not self.is_connected:
            await self.connect()

        loop = asyncio.get_running_loop()
        pending: PendingReply[T] = PendingReply(parse, match, loop.create_future())
        self._pending.append(pending)

        try:
            await self._write(data)
            if timeout:
                return await asyncio.wait_for(pending.future, timeout)
            return await pending.future
        except asyncio.TimeoutError as e:
            raise SocketTimeoutError(timeout_seconds=timeout) from (pending.last_error or e)
        finally:
            self._discard(pending)

    def _discard(self, pending: PendingReply[Any]) -> None:
        if pending in self._pending:
            self._pending.remove(pending)
        if not pending.future.done():
            pending.future.cancel()

    def _datagram_received(self, data: bytes) -> None:
        """Offer a received datagram to every outstanding send."""
        for pending in list(self._pending):
            pending.feed(data)

    def _error_received(self, error: BaseException) -> None:
        """Fail every outstanding send with a socket error."""
        self._fail_pending(SocketError(str(error) or type(error).__name__))

    def _fail_pending(self, error: BaseException) -> None:
        for pending in list(self._pending):
            pending.fail(error)

    async def __aenter__(self) -> AbstractTransport:
        """Async context manager entry - connects the transport."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - closes the transport."""
        await self.close()
