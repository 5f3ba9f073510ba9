"""
Error taxonomy of the streaming client.

Only ProtocolError and TransportError ever reach the error hooks; ParseError
and DispatchError are logged where they occur and the frame is dropped.
"""

from typing import Any


class StreamError(Exception):
    """Base class for streaming client errors."""


class TransportError(StreamError):
    """Socket-level failure: open, send or receive on a connection failed."""

    def __init__(self, message: str, connection: str | None = None) -> None:
        super().__init__(message)
        self.connection = connection


class ProtocolError(StreamError):
    """The exchange rejected a request or reported an error event."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        arg: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.arg = arg

    def __str__(self) -> str:
        if self.code:
            return f"{self.args[0]} (code {self.code})"
        return str(self.args[0])


class ParseError(StreamError):
    """An inbound frame could not be classified or normalized."""

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class DispatchError(StreamError):
    """A subscriber callback raised while handling a message."""

    def __init__(self, callback: Any, cause: BaseException) -> None:
        name = getattr(callback, "__qualname__", None) or repr(callback)
        super().__init__(f"callback {name} raised {type(cause).__name__}: {cause}")
        self.callback = callback
        self.cause = cause
