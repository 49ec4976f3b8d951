"""
UDP transport using asyncio datagram endpoints.

This module provides the production transport for talking to miIO devices.
The socket is connected to the device address, so the operating system only
delivers datagrams sent by that device.
"""

from __future__ import annotations

import asyncio
import logging

from miioapi.exceptions import SocketError
from miioapi.protocol.constants import ProtocolConstants
from miioapi.transport.abc import AbstractTransport
from miioapi.utils import HexDump

# Module logger
logger = logging.getLogger(__name__)


class _MiioDatagramProtocol(asyncio.DatagramProtocol):
    """Forwards socket events to the owning UdpTransport."""

    def __init__(self, owner: UdpTransport) -> None:
        self._owner = owner

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._owner._on_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self._owner._on_connection_lost(exc)


class UdpTransport(AbstractTransport):
    """
    UDP transport bound to one device.

    Connecting is lazy: the first send() opens the socket. Concurrent first
    sends share a single connect operation.

    Attributes:
        address: Device (host, port).
        is_connected: Whether the socket is open and connected.

    Example:
        >>> transport = UdpTransport("192.168.1.31")
        >>> try:
        ...     reply = await transport.send(frame, Packet.from_bytes, is_handshake, 3.0)
        ... finally:
        ...     await transport.close()
    """

    def __init__(
        self,
        host: str,
        port: int = ProtocolConstants.DEFAULT_PORT,
        *,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        """
        Initialize the UDP transport.

        Args:
            host: Device IP address or host name.
            port: Device UDP port (default: 54321).
            log: Logger for socket events (defaults to the module logger).
        """
        super().__init__()
        self._host = host
        self._port = port
        self._log = log or logger
        self._transport: asyncio.DatagramTransport | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def is_connected(self) -> bool:
        """Check if the socket is open and connected to the device."""
        return self._transport is not None and not self._transport.is_closing()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def address(self) -> tuple[str, int]:
        return (self._host, self._port)

    async def connect(self) -> None:
        """
        Open the socket and connect it to the device address.

        Concurrent callers share one connect operation; its outcome is
        delivered to all of them.

        Raises:
            SocketError: If the transport is closed or the socket cannot
                be opened.
        """
        if self._closed:
            raise SocketError("Transport closed")
        if self.is_connected:
            return

        if self._connect_task is None:
            self._connect_task = asyncio.ensure_future(self._open_endpoint())
            self._connect_task.add_done_callback(self._connect_done)

        await asyncio.shield(self._connect_task)

    def _connect_done(self, task: asyncio.Task[None]) -> None:
        if self._connect_task is task:
            self._connect_task = None
        if not task.cancelled():
            # Mark the exception retrieved; callers re-raise it through shield
            task.exception()

    async def _open_endpoint(self) -> None:
        loop = asyncio.get_running_loop()
        self._log.debug("Connecting to %s:%d", self._host, self._port)
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _MiioDatagramProtocol(self),
                remote_addr=(self._host, self._port),
            )
        except OSError as e:
            raise SocketError(f"Failed to connect to {self._host}:{self._port}: {e}") from e

        if self._closed:
            transport.close()
            raise SocketError("Transport closed")

        self._transport = transport
        self._log.debug("Connected to %s:%d", self._host, self._port)

    async def _write(self, data: bytes) -> None:
        if self._closed or self._transport is None or self._transport.is_closing():
            raise SocketError("Transport closed")

        self._log.debug("-> %s:%d (%d bytes)%s", self._host, self._port, len(data), HexDump(data))
        try:
            self._transport.sendto(data)
        except OSError as e:
            raise SocketError(str(e)) from e

    async def close(self) -> None:
        """
        Close the socket.

        Outstanding sends fail with SocketError. Safe to call multiple
        times; errors while closing are ignored.
        """
        if self._closed:
            return
        self._closed = True

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                self._log.debug("Ignoring error while closing socket: %s", e)

        self._fail_pending(SocketError("Transport closed"))
        self._log.debug("Closed transport to %s:%d", self._host, self._port)

    def _on_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        self._log.debug("<- %s:%d (%d bytes)%s", addr[0], addr[1], len(data), HexDump(data))
        self._datagram_received(data)

    def _on_error(self, exc: Exception) -> None:
        self._log.debug("Socket error from %s:%d: %s", self._host, self._port, exc)
        self._error_received(exc)

    def _on_connection_lost(self, exc: Exception | None) -> None:
        self._transport = None
        if exc is not None:
            self._log.warning("Connection to %s:%d lost: %s", self._host, self._port, exc)
            self._error_received(exc)

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("connected" if self.is_connected else "idle")
        return f"UdpTransport({self._host}:{self._port}, {state})"
