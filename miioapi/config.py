"""
Per-call configuration.

CallOptions controls how hard an exchange is tried: how many attempts,
how long to wait between them and how long to wait for a reply. Every
public entry point accepts either a CallOptions instance or a mapping of
overrides, merged over the defaults.

Example:
    >>> options = CallOptions().merged({"timeout": 1.5})
    >>> options.attempts, options.timeout
    (3, 1.5)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

from miioapi.protocol.constants import ProtocolConstants


class CallOptions(BaseModel):
    """
    Retry and timeout settings for one exchange.

    Times are in seconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    attempts: int = Field(
        default=ProtocolConstants.DEFAULT_ATTEMPTS,
        ge=0,
        description="Total number of attempts",
    )
    delay: float = Field(
        default=ProtocolConstants.DEFAULT_RETRY_DELAY,
        ge=0,
        description="Delay between attempts in seconds",
    )
    timeout: float | None = Field(
        default=ProtocolConstants.DEFAULT_TIMEOUT,
        ge=0,
        description="Reply timeout in seconds, None or 0 waits forever",
    )

    def merged(self, overrides: OptionsLike | None) -> CallOptions:
        """
        Return these options with overrides applied.

        Only the fields explicitly set on a CallOptions override are taken.

        Args:
            overrides: CallOptions, mapping of field overrides, or None.

        Returns:
            New CallOptions (or self when there is nothing to override).

        Raises:
            ValueError: If an override is invalid.
        """
        if overrides is None:
            return self
        if isinstance(overrides, CallOptions):
            updates: dict[str, Any] = overrides.model_dump(include=overrides.model_fields_set)
        else:
            updates = dict(overrides)
        if not updates:
            return self
        return CallOptions.model_validate({**self.model_dump(), **updates})


OptionsLike = Union[CallOptions, Mapping[str, Any]]

DEFAULT_CALL_OPTIONS = CallOptions()
