"""
Small helpers shared by the transport and device layers.

- Random request ids and call tags
- Hex dumps of frames for debug logging
- A LoggerAdapter that prefixes log lines with the device address and
  a per-call tag
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import MutableMapping
from typing import Any

from miioapi.protocol.constants import ProtocolConstants

_TAG_ALPHABET = string.ascii_lowercase + string.digits


def random_request_id() -> int:
    """Return a random request id between 0 and 0xFFFFFFFF - 1."""
    return secrets.randbelow(ProtocolConstants.MAX_REQUEST_ID)


def random_tag(length: int = 8) -> str:
    """Return a random lowercase alphanumeric tag used to group log lines."""
    return "".join(secrets.choice(_TAG_ALPHABET) for _ in range(length))


def hexdump(data: bytes, block_size: int = 16) -> str:
    """
    Return a hex dump of binary data.

    Each line holds a 4-digit hex offset followed by block_size bytes.

    Example:
        >>> print(hexdump(b"\\x21\\x31\\x00\\x20"))
        0000    21 31 00 20
    """
    lines = []
    for offset in range(0, len(data), block_size):
        block = data[offset:offset + block_size]
        line = " ".join(f"{b:02x}" for b in block)
        lines.append(f"{offset:04x}    {line}")
    return "\n".join(lines)


class HexDump:
    """
    Lazy hex dump for logging arguments.

    The dump is only rendered when the log record is actually emitted:

        logger.debug("-> %s", HexDump(frame))
    """

    __slots__ = ("_data",)

    def __init__(self, data: bytes) -> None:
        self._data = data

    def __str__(self) -> str:
        return "\n" + hexdump(self._data)


class CallLogAdapter(logging.LoggerAdapter):
    """
    Prefix log messages with the device address and an optional call tag.

    Example:
        >>> log = CallLogAdapter(logger, {"address": "192.168.1.31", "tag": "k3j9x0aa"})
        >>> log.debug("-> handshake")  # "[192.168.1.31 k3j9x0aa] -> handshake"
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        prefix = " ".join(str(v) for v in (extra.get("address"), extra.get("tag")) if v)
        if prefix:
            msg = f"[{prefix}] {msg}"
        return msg, kwargs

    def with_tag(self, tag: str | None = None) -> CallLogAdapter:
        """Return an adapter for the same logger with a fresh call tag."""
        extra = dict(self.extra or {})
        extra["tag"] = tag or random_tag()
        return CallLogAdapter(self.logger, extra)
