"""Pydantic models shared by the chat engine.

Provides type safety, validation, and JSON serialization for persisted
sessions and streamed turns.

Models:
    - Message: Individual message in a conversation
    - ConversationSession: Persisted conversation with its messages
    - SessionIdentity: Pointer to the current session, survives resets
    - StreamingStatus: Progress flags projected from the turn state
    - StorageStats: Usage of the local session storage
    - FileCandidate / ValidationResult: Attachment validation input and verdict
    - RunRequest / SubmitResult: One streamed agent run
    - SessionSnapshot: Current conversation as served over HTTP
"""

from src.models.schemas import (
    Attachment,
    Citation,
    ConversationSession,
    ExtraData,
    FileCandidate,
    Message,
    RunRequest,
    SessionIdentity,
    SessionSnapshot,
    SessionSummary,
    StorageStats,
    StreamingStatus,
    SubmitResult,
    TurnState,
    ValidationResult,
)

__all__ = [
    "Attachment",
    "Citation",
    "ConversationSession",
    "ExtraData",
    "FileCandidate",
    "Message",
    "RunRequest",
    "SessionIdentity",
    "SessionSnapshot",
    "SessionSummary",
    "StorageStats",
    "StreamingStatus",
    "SubmitResult",
    "TurnState",
    "ValidationResult",
]
