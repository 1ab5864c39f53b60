"""Error taxonomy for the chat relay."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

DEFAULT_UPSTREAM_STATUS = 500


class CancelReason(str, Enum):
    """Origin of a relay cancellation."""

    DEADLINE = "deadline"
    CLIENT_DISCONNECT = "client_disconnect"


class ChatValidationError(ValueError):
    """The inbound request body cannot be relayed (HTTP 400)."""


class UnsupportedContentError(ChatValidationError):
    """A message content variant the configured upstream model cannot accept."""


class UpstreamError(RuntimeError):
    """The upstream completion service rejected or failed the call."""

    def __init__(self, status: Optional[int] = None, message: str = "") -> None:
        self.status = status or DEFAULT_UPSTREAM_STATUS
        self.message = message or "An error occurred with the AI service."
        super().__init__(f"Upstream error {self.status}: {self.message}")

    @classmethod
    def from_exception(cls, exc: Any) -> "UpstreamError":
        """Build an UpstreamError from an SDK exception, keeping its status when present."""
        status = getattr(exc, "status_code", None)
        message = getattr(exc, "message", None) or str(exc)
        return cls(status=status, message=message)


class StreamCancelled(Exception):
    """The relay was cancelled by its deadline or by the caller going away."""

    def __init__(self, reason: CancelReason) -> None:
        self.reason = reason
        super().__init__(f"Relay cancelled: {reason.value}")

    @property
    def timed_out(self) -> bool:
        return self.reason is CancelReason.DEADLINE
