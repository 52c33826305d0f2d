"""Error taxonomy for the chat engine.

Validation and submission errors block a turn before any network call.
Transport, timeout and server errors resolve the turn to Errored with a
notice in the agent message. Protocol errors are logged and skipped.
Quota errors trigger one cleanup-and-retry before surfacing as
StorageFullError.
"""


class ChatError(Exception):
    """Base class for chat engine errors."""

    pass


class SubmissionError(ChatError):
    """Raised when a submission is refused before it reaches the network."""

    pass


class AttachmentValidationError(SubmissionError):
    """Raised when every attached file was rejected and no text remains."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors) or "No valid files to send")


class EmptySubmissionError(SubmissionError):
    """Raised when there is neither text nor a file to send."""

    pass


class StreamBusyError(SubmissionError):
    """Raised when a stream is already in flight for the session."""

    pass


class TransportError(ChatError):
    """Raised when the streaming channel fails."""

    pass


class StreamTimeoutError(ChatError):
    """Raised when the client watchdog fires before a terminal event."""

    pass


class ProtocolError(ChatError):
    """Raised for malformed or unrecognized stream records."""

    pass


class ServerError(ChatError):
    """Raised for a RunError event sent by the backend."""

    pass


class QuotaExceededError(ChatError):
    """Raised by a key-value area when a write would exceed its quota."""

    pass


class StorageFullError(ChatError):
    """Raised when a write still fails after automatic cleanup."""

    pass
