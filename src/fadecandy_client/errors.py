"""Exception hierarchy for the Fadecandy client."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union


class FadecandyError(Exception):
    """Base class for every error raised by this package."""


class ServerConnectionError(FadecandyError, ConnectionError):
    """The channel to fcserver could not be established or was lost."""


class RequestTimeoutError(FadecandyError, TimeoutError):
    """A request went unanswered within its deadline."""

    def __init__(self, sequence: int, message: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for fcserver to respond to this message: {message}"
        )
        self.sequence = sequence
        self.message = message
        self.timeout = timeout


class ProtocolError(FadecandyError):
    """An inbound payload was malformed or unexpected."""

    def __init__(self, reason: str, frame: Optional[Union[str, bytes]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.frame = frame


class DeviceCommandError(FadecandyError):
    """fcserver reported a failure for a request."""

    def __init__(
        self,
        request_type: Optional[str],
        reply: Mapping[str, Any],
        device: Optional[Mapping[str, Any]] = None,
    ) -> None:
        serial = device.get("serial") if device else None
        target = f" for device {serial}" if serial else ""
        super().__init__(f"fcserver rejected {request_type}{target}: {reply.get('error')}")
        self.request_type = request_type
        self.reply = dict(reply)
        self.device = dict(device) if device else None
