"""Chat engine core.

Turns streamed agent events into stable message records.

Modules:
    - config: Environment-driven engine configuration
    - errors: Error taxonomy
    - generation: Generation tokens for stale callbacks
    - message_store: Append-only message list with an in-flight handle
    - state_machine: Per-turn state machine driven by stream events
    - watchdog: Device-aware submission timeout
    - coordinator: Submission orchestration and session identity
"""

from src.chat.config import ChatConfig, get_chat_config
from src.chat.errors import (
    AttachmentValidationError,
    ChatError,
    EmptySubmissionError,
    ProtocolError,
    QuotaExceededError,
    ServerError,
    StorageFullError,
    StreamBusyError,
    StreamTimeoutError,
    SubmissionError,
    TransportError,
)
from src.chat.generation import GenerationCounter
from src.chat.message_store import MessageStore

__all__ = [
    "AttachmentValidationError",
    "ChatConfig",
    "ChatError",
    "EmptySubmissionError",
    "GenerationCounter",
    "MessageStore",
    "ProtocolError",
    "QuotaExceededError",
    "ServerError",
    "StorageFullError",
    "StreamBusyError",
    "StreamTimeoutError",
    "SubmissionError",
    "TransportError",
    "get_chat_config",
]
