"""
Data models for miIO protocol messages.

This module contains Pydantic models representing the data carried in
encrypted payloads:

- Value objects (DeviceToken)
- Requests
- Success and error responses
"""

from miioapi.models.messages import (
    DeviceToken,
    ErrorResponse,
    Request,
    Response,
    ResponseError,
    SuccessResponse,
    parse_response,
)

__all__ = [
    # Value Objects
    "DeviceToken",
    # Messages
    "Request",
    "Response",
    "SuccessResponse",
    "ErrorResponse",
    "ResponseError",
    "parse_response",
]
