"""
Pydantic models for miIO protocol messages.

This module defines the data structures carried inside encrypted payloads,
implemented as immutable Pydantic models with validation.

Design principles:
- All models are frozen (immutable)
- Method-specific params/results stay untyped (Any); device command
  catalogs are a layer above this library
- A response is either a SuccessResponse or an ErrorResponse
"""

from __future__ import annotations

import json
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from miioapi.exceptions import ProtocolError
from miioapi.protocol.constants import ProtocolConstants


class DeviceToken(BaseModel):
    """
    Device token: the 16-byte secret shared with a device.

    Tokens are usually handled as 32 hexadecimal characters. Both the hex
    form and raw bytes are accepted.

    Example:
        >>> token = DeviceToken.parse("00112233445566778899aabbccddeeff")
        >>> len(token.value)
        16
        >>> str(token)
        '00112233445566778899aabbccddeeff'
    """

    model_config = ConfigDict(frozen=True)

    value: bytes = Field(
        min_length=ProtocolConstants.TOKEN_SIZE,
        max_length=ProtocolConstants.TOKEN_SIZE,
        description="Raw 16-byte token",
    )

    @field_validator("value", mode="before")
    @classmethod
    def decode_hex(cls, v: Any) -> Any:
        """Accept the 32-character hex form."""
        if isinstance(v, str):
            try:
                return bytes.fromhex(v.strip())
            except ValueError as e:
                raise ValueError("Token must be 32 hexadecimal characters") from e
        return v

    def __str__(self) -> str:
        return self.value.hex()

    def __repr__(self) -> str:
        # Never leak the secret into logs
        return "DeviceToken(****)"

    @classmethod
    def parse(cls, value: str | bytes | DeviceToken) -> DeviceToken:
        """
        Parse a token from hex text or raw bytes.

        Args:
            value: Hex string, raw bytes, or an existing DeviceToken.

        Returns:
            DeviceToken instance.

        Raises:
            ValueError: If value is not a valid 16-byte token.
        """
        if isinstance(value, DeviceToken):
            return value
        return cls(value=value)


class Request(BaseModel):
    """
    A method call sent to a device.

    The wire payload is the compact JSON of {id, method, params} followed
    by a single NUL byte. Missing params are sent as an empty list.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=0, le=ProtocolConstants.MAX_REQUEST_ID, description="Random request id")
    method: str = Field(min_length=1, description="Device method name")
    params: list[Any] = Field(default_factory=list, description="Positional method params")

    @field_validator("params", mode="before")
    @classmethod
    def default_params(cls, v: Any) -> Any:
        if v is None:
            return []
        return v

    def to_payload(self) -> bytes:
        """Serialize to the NUL-terminated JSON payload."""
        return self.model_dump_json().encode("utf-8") + b"\x00"


class ResponseError(BaseModel):
    """Error object reported by a device."""

    model_config = ConfigDict(frozen=True)

    code: int
    message: str = ""


class SuccessResponse(BaseModel):
    """Reply carrying a method result. result is None when the device sent none."""

    model_config = ConfigDict(frozen=True)

    id: int
    result: Any = None


class ErrorResponse(BaseModel):
    """Reply carrying a device-reported error."""

    model_config = ConfigDict(frozen=True)

    id: int
    error: ResponseError


Response = Union[SuccessResponse, ErrorResponse]


def parse_response(payload: bytes) -> Response:
    """
    Parse a decrypted payload into a Response.

    Trailing NUL bytes are stripped before decoding.

    Args:
        payload: Decrypted payload bytes.

    Returns:
        SuccessResponse or ErrorResponse.

    Raises:
        ProtocolError: If the payload is not UTF-8 JSON describing a
            response object with an integer id.
    """
    try:
        data = json.loads(payload.rstrip(b"\x00").decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Malformed response payload: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Response payload is not an object: {type(data).__name__}")

    try:
        if "error" in data:
            return ErrorResponse.model_validate(data)
        return SuccessResponse.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid response payload: {e}") from e
