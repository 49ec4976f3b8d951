"""
Exception hierarchy for miioapi.

All exceptions inherit from MiioError, providing a clean hierarchy
for error handling. The design follows these principles:

1. Transport failures (socket errors, timeouts) are distinct from protocol errors
2. Protocol errors cover wire integrity: framing, checksum, payload decoding
3. Device-reported errors carry the original error code for debugging
4. All exceptions provide meaningful error messages
"""

from __future__ import annotations


class MiioError(Exception):
    """
    Base exception for all miioapi errors.

    All library-specific exceptions inherit from this class, allowing
    callers to catch all miioapi errors with a single except clause.
    """

    pass


class SocketError(MiioError):
    """
    Transport-level error.

    Raised for low-level socket issues:
    - Socket cannot be opened or connected
    - Datagram send/receive failures
    - Transport already closed

    Socket errors are always retryable by the enclosing retry wrapper.
    """

    pass


class SocketTimeoutError(SocketError):
    """
    No matching reply received in time.

    Raised when a sent datagram is not answered by a matching reply
    within the expected time. This may indicate the device is offline,
    busy, or the token is wrong (devices ignore badly signed requests).
    """

    def __init__(
        self,
        message: str = "Timeout",
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds

    def __str__(self) -> str:
        base = super().__str__()
        if self.timeout_seconds is not None:
            return f"{base} (after {self.timeout_seconds:.1f}s)"
        return base


class ProtocolError(MiioError):
    """
    Protocol-level error.

    Raised when a received datagram violates the wire format, such as:
    - Invalid magic number
    - Declared size differs from datagram length
    - Invalid flag value
    - Undecryptable or malformed payload
    """

    pass


class ChecksumError(ProtocolError):
    """
    Checksum validation failure.

    Raised when a received packet's checksum doesn't match the value
    computed with the session token. The payload is never decrypted
    in this case.
    """

    def __init__(
        self,
        message: str = "Invalid packet checksum",
        *,
        expected: bytes | None = None,
        received: bytes | None = None,
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.received = received

    def __str__(self) -> str:
        base = super().__str__()
        if self.expected is not None and self.received is not None:
            return f"{base} (expected {self.expected.hex()}, got {self.received.hex()})"
        return base


class DeviceError(MiioError):
    """
    Error reported by the device.

    Raised when the device answers a call with an error object, or with
    a reply that carries no result. The code attribute holds the
    device's numeric error code when one was reported.
    """

    def __init__(self, message: str, *, code: int | None = None) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f'Device responded with error: "{self.message}". Code: {self.code}'
        return self.message
