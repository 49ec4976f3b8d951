"""
miIO Device Client.

This module provides the main client interface for calling methods on
miIO devices over UDP.

The client keeps a small amount of session state per device:
    - the last known device timestamp, used to stamp outgoing requests
    - the wall-clock time of the last successful exchange
    - at most one in-flight handshake, shared by all concurrent callers

Handshake state machine:
    IDLE -> handshake() -> HANDSHAKING -> (success or failure) -> IDLE
    any state -> destroy() -> CLOSED

A call made more than 60 seconds after the last successful exchange
re-handshakes first to refresh the device timestamp.

Example:
    >>> from miioapi import Device
    >>>
    >>> async def main():
    ...     device = await Device.discover("192.168.1.31", "00112233445566778899aabbccddeeff")
    ...     try:
    ...         print(await device.call("get_prop", ["power"]))
    ...     finally:
    ...         await device.destroy()
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from miioapi.config import DEFAULT_CALL_OPTIONS, CallOptions
from miioapi.exceptions import DeviceError, SocketError
from miioapi.models.messages import DeviceToken, ErrorResponse, Request, Response
from miioapi.protocol.constants import ProtocolConstants
from miioapi.protocol.packet import HANDSHAKE_PACKET, Packet, is_handshake
from miioapi.retry import retry
from miioapi.session import MiioSession
from miioapi.transport.udp import UdpTransport
from miioapi.utils import CallLogAdapter, HexDump, random_request_id

if TYPE_CHECKING:
    from miioapi.config import OptionsLike
    from miioapi.transport.abc import AbstractTransport

# Module logger
logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Device session states."""

    IDLE = auto()
    """No handshake in flight."""

    HANDSHAKING = auto()
    """A handshake is in flight; callers share its outcome."""

    CLOSED = auto()
    """destroy() was called; the transport is released."""


@dataclass(frozen=True)
class HandshakeResult:
    """Device id and clock reported by a handshake reply."""

    device_id: int
    timestamp: int


class Device:
    """
    Client for one miIO device.

    Prefer Device.discover(), which handshakes first and returns a ready
    session. The constructor is for callers that already know the device
    id (and possibly a recent timestamp) and want to skip that handshake.

    Several calls may run concurrently on one device; each has its own
    request id and is matched independently.

    Attributes:
        id: Device identifier.
        state: Current session state.
        timestamp: Last known device timestamp.
        last_seen_at: Wall-clock time (epoch seconds) of the last exchange.
        transport: The underlying transport.

    Example:
        >>> device = Device("192.168.1.31", token, 0x0123ABCD)
        >>> await device.call("set_power", ["on"])  # handshakes first
        ['ok']
        >>> await device.destroy()
    """

    def __init__(
        self,
        address: str,
        token: str | bytes | DeviceToken,
        device_id: int,
        *,
        port: int = ProtocolConstants.DEFAULT_PORT,
        transport: AbstractTransport | None = None,
        timestamp: int = 0,
        last_seen_at: float = 0.0,
        options: OptionsLike | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the device client.

        Args:
            address: Device IP address.
            token: Device token (32 hex characters or 16 bytes).
            device_id: Device identifier.
            port: Device UDP port (default: 54321).
            transport: Transport to use; a UdpTransport is created if omitted.
            timestamp: Last known device timestamp.
            last_seen_at: Epoch seconds of the last exchange with the device.
            options: Default call options for this device.
            log: Logger to use instead of the module logger.

        Raises:
            ValueError: If the token or options are invalid.
        """
        base_log = log or logger
        self._address = address
        self._session = MiioSession(device_id, token)
        self._options = DEFAULT_CALL_OPTIONS.merged(options)
        self._transport = transport or UdpTransport(address, port, log=base_log)
        self._timestamp = timestamp
        self._last_seen_at = last_seen_at
        self._handshake_task: asyncio.Task[HandshakeResult] | None = None
        self._closed = False
        self._log = CallLogAdapter(base_log, {"address": address})

    @property
    def id(self) -> int:
        """Get the device identifier."""
        return self._session.device_id

    @property
    def address(self) -> str:
        """Get the device IP address."""
        return self._address

    @property
    def state(self) -> SessionState:
        """Get the current session state."""
        if self._closed:
            return SessionState.CLOSED
        if self._handshake_task is not None:
            return SessionState.HANDSHAKING
        return SessionState.IDLE

    @property
    def timestamp(self) -> int:
        """Get the last known device timestamp."""
        return self._timestamp

    @property
    def last_seen_at(self) -> float:
        """Get the wall-clock time of the last successful exchange."""
        return self._last_seen_at

    @property
    def options(self) -> CallOptions:
        """Get the default call options."""
        return self._options

    @property
    def transport(self) -> AbstractTransport:
        """Get the underlying transport."""
        return self._transport

    @staticmethod
    async def _perform_handshake(
        transport: AbstractTransport,
        options: CallOptions,
        log: logging.Logger | logging.LoggerAdapter,
    ) -> HandshakeResult:
        """
        Send the handshake frame until a handshake reply arrives.

        Args:
            transport: Transport to the device.
            options: Attempts, delay and timeout to use.
            log: Logger for the exchange.

        Returns:
            Device id and timestamp from the reply header.

        Raises:
            SocketError: If no reply arrives after all attempts.
        """
        request = HANDSHAKE_PACKET.to_bytes()
        attempt = 0

        async def attempt_handshake() -> Packet:
            nonlocal attempt
            attempt += 1
            log.debug("#%d -> handshake%s", attempt, HexDump(request))
            return await transport.send(request, Packet.from_bytes, is_handshake, options.timeout)

        packet = await retry(attempt_handshake, options.attempts, options.delay, log=log)
        log.debug("<- %r", packet)
        return HandshakeResult(device_id=packet.device_id, timestamp=packet.timestamp)

    @classmethod
    async def discover(
        cls,
        address: str,
        token: str | bytes | DeviceToken,
        options: OptionsLike | None = None,
        *,
        port: int = ProtocolConstants.DEFAULT_PORT,
        transport: AbstractTransport | None = None,
        log: logging.Logger | None = None,
    ) -> Device:
        """
        Handshake with a device and return a ready-to-use client.

        The returned device is seeded with the id and timestamp from the
        handshake reply, so its first call does not handshake again.

        Args:
            address: Device IP address.
            token: Device token (32 hex characters or 16 bytes).
            options: Attempts, delay and timeout for the handshake; also the
                default call options of the returned device.
            port: Device UDP port (default: 54321).
            transport: Transport to use; a UdpTransport is created if omitted.
            log: Logger to use instead of the module logger.

        Returns:
            Connected Device.

        Raises:
            ValueError: If the token or options are invalid.
            SocketError: If the device does not answer the handshake.
        """
        token = DeviceToken.parse(token)
        handshake_options = DEFAULT_CALL_OPTIONS.merged(options)
        base_log = log or logger
        transport = transport or UdpTransport(address, port, log=base_log)
        handshake_log = CallLogAdapter(base_log, {"address": address}).with_tag()

        handshake_log.info("Discovering device at %s", address)
        try:
            result = await cls._perform_handshake(transport, handshake_options, handshake_log)
        except BaseException:
            # Release the socket before propagating
            await transport.close()
            raise

        handshake_log.info("Discovered device 0x%08x", result.device_id)
        return cls(
            address,
            token,
            result.device_id,
            port=port,
            transport=transport,
            timestamp=result.timestamp,
            last_seen_at=time.time(),
            options=handshake_options,
            log=log,
        )

    async def _handshake(self, options: CallOptions) -> HandshakeResult:
        """
        Handshake, sharing one in-flight exchange between concurrent callers.

        The pending task is cleared once it settles, whichever way, so a
        later call starts a fresh handshake.
        """
        if self._handshake_task is None:
            self._handshake_task = asyncio.ensure_future(
                self._perform_handshake(self._transport, options, self._log.with_tag())
            )
            self._handshake_task.add_done_callback(self._handshake_done)
        return await asyncio.shield(self._handshake_task)

    def _handshake_done(self, task: asyncio.Task[HandshakeResult]) -> None:
        if self._handshake_task is task:
            self._handshake_task = None
        if not task.cancelled():
            # Mark the exception retrieved; every waiter re-raises it
            task.exception()

    def _is_stale(self) -> bool:
        """Check if the liveness window has passed (whole seconds, rounded down)."""
        seconds_passed = math.floor(time.time() - self._last_seen_at)
        return seconds_passed > ProtocolConstants.MAX_CALL_INTERVAL

    async def call(
        self,
        method: str,
        params: list[Any] | tuple[Any, ...] | None = None,
        options: OptionsLike | None = None,
    ) -> Any:
        """
        Call a method on the device and return its result.

        Args:
            method: Device method name, e.g. "get_prop".
            params: Positional method params (default: empty list).
            options: Overrides for attempts, delay and timeout.

        Returns:
            The "result" value from the device reply.

        Raises:
            DeviceError: If the device reports an error or an empty result.
            SocketError: If no matching reply arrives after all attempts,
                or the device has been destroyed.
                Corrupt replies are dropped and only show up as the cause
                of the final timeout.

        Example:
            >>> await device.call("get_prop", ["power", "mode"])
            ['on', 'auto']
        """
        if self._closed:
            raise SocketError("Device destroyed")

        call_options = self._options.merged(options)
        log = self._log.with_tag()

        if self._is_stale():
            log.debug("-> handshake")
            handshake = await self._handshake(call_options)
            self._timestamp = handshake.timestamp
            self._last_seen_at = time.time()

        request = Request(id=random_request_id(), method=method, params=params)
        log.debug("-> %r", request)

        packet = self._session.pack_request(request, self._timestamp)
        log.debug("-> %r", packet)
        data = packet.to_bytes()

        def parse(datagram: bytes) -> tuple[Packet, Response | None]:
            reply = Packet.from_bytes(datagram)
            log.debug("<- %r", reply)
            response = None if reply.is_handshake else self._session.unpack_response(reply)
            return reply, response

        def match(parsed: tuple[Packet, Response | None]) -> bool:
            _, response = parsed
            log.debug("<- %r", response)
            return response is not None and response.id == request.id

        attempt = 0

        async def attempt_call() -> tuple[Packet, Response | None]:
            nonlocal attempt
            attempt += 1
            log.debug("#%d ->%s", attempt, HexDump(data))
            return await self._transport.send(data, parse, match, call_options.timeout)

        reply, response = await retry(
            attempt_call,
            call_options.attempts,
            call_options.delay,
            log=log,
        )

        self._timestamp = reply.timestamp
        self._last_seen_at = time.time()

        if isinstance(response, ErrorResponse):
            log.debug("Device error %d: %s", response.error.code, response.error.message)
            raise DeviceError(response.error.message, code=response.error.code)

        if response is None or response.result is None:
            raise DeviceError("Empty response")

        return response.result

    async def destroy(self) -> None:
        """
        Release the transport.

        Safe to call multiple times; never raises.
        """
        if self._closed:
            return
        self._closed = True

        try:
            await self._transport.close()
        except Exception as e:
            self._log.debug("Ignoring error while closing transport: %s", e)
        self._log.debug("Destroyed")

    async def __aenter__(self) -> Device:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - destroy the device session."""
        await self.destroy()

    def __repr__(self) -> str:
        return f"Device(id=0x{self.id:08x}, address={self._address}, state={self.state.name})"
