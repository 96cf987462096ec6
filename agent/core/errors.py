"""Error types raised across the chat service.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to, so routes can render them uniformly.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat service errors.

    Attributes:
        message: human readable description.
        code: machine readable error code.
        http_status: status used when the error reaches the HTTP layer.
        extra: additional context (thread id, user id, ...).
    """

    code = "CHAT_ERROR"
    http_status = 500

    def __init__(self, message: str, **extra):
        self.message = message
        self.extra = extra
        super().__init__(message)


class InvalidArgument(ChatError):
    """A required identifier is missing or blank."""

    code = "INVALID_ARGUMENT"
    http_status = 400


class RemoteThreadFault(ChatError):
    """The remote agent runtime failed to create, attach or delete a thread."""

    code = "REMOTE_THREAD_FAULT"
    http_status = 502


class TransportFault(ChatError):
    """Writing to the caller failed, usually because it disconnected.

    Raised after the response has started, so it never becomes an HTTP status.
    """

    code = "TRANSPORT_FAULT"


class PersistenceFault(ChatError):
    """The history store could not read, append or delete messages."""

    code = "PERSISTENCE_FAULT"
    http_status = 500
