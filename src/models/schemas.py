import time
import uuid
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class TurnState(str, Enum):
    """States of a single conversation turn."""

    IDLE = "idle"
    THINKING = "thinking"
    CALLING_TOOL = "calling_tool"
    ACCESSING_KNOWLEDGE = "accessing_knowledge"
    UPDATING_MEMORY = "updating_memory"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.COMPLETED, TurnState.ERRORED)


class Attachment(BaseModel):
    """Metadata of a file attached to a user message.

    Attributes:
        name: Original filename.
        size: Size in bytes.
        mime_type: Resolved MIME type sent to the backend.
    """

    name: str
    size: int = Field(ge=0)
    mime_type: str


class CitationMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    chunk: int | None = None
    chunk_size: int | None = None


class Citation(BaseModel):
    """A knowledge base reference returned alongside an answer."""

    model_config = ConfigDict(extra="allow")

    name: str = ""
    content: str = ""
    meta_data: CitationMeta | None = None


class ExtraData(BaseModel):
    model_config = ConfigDict(extra="allow")

    references: list[Citation] | None = None


class Message(BaseModel):
    """A single chat message in the conversation.

    Attributes:
        id: Unique message identifier.
        role: Either 'user' or 'agent'.
        content: Message text. Grows while the agent message is streaming.
        created_at: Creation time in epoch seconds.
        attachments: Files sent with a user message.
        extra_data: Citations attached to an agent answer.
        error: Whether the turn ended in an error notice.
        streaming: Whether this is the in-flight agent message.
    """

    id: str = Field(default_factory=new_message_id)
    role: Literal["user", "agent"]
    content: str = ""
    created_at: float = Field(default_factory=time.time)
    attachments: list[Attachment] | None = None
    extra_data: ExtraData | None = None
    error: bool = False
    streaming: bool = False


class ConversationSession(BaseModel):
    """One continuous conversation, persisted under its session_id.

    Attributes:
        session_id: Local identifier, replaced on reset.
        user_id: Persistent user identifier, survives resets.
        messages: Ordered conversation turns.
        last_activity_at: Epoch seconds of the last mutation.
        remote_session_id: Backend session id learned from RunStarted.
        agent_id: Backend agent this conversation talks to.
    """

    session_id: str
    user_id: str
    messages: list[Message] = Field(default_factory=list)
    last_activity_at: float = Field(default_factory=time.time)
    remote_session_id: str | None = None
    agent_id: str | None = None


class SessionIdentity(BaseModel):
    """Small record pointing at the current session. Survives resets."""

    current_session_id: str | None = None
    user_id: str


class StreamingStatus(BaseModel):
    """UI-facing progress flags, projected from the turn state."""

    is_thinking: bool = False
    is_calling_tool: bool = False
    tool_name: str | None = None
    is_accessing_knowledge: bool = False
    is_memory_update_started: bool = False
    has_completed: bool = False


class StorageStats(BaseModel):
    """Usage of the persisted session area.

    Attributes:
        usage_bytes: Sum of serialized session record sizes.
        limit_bytes: Configured storage budget.
        percentage: usage_bytes / limit_bytes * 100.
        session_count: Number of persisted sessions.
        is_near_limit: True when percentage exceeds the near-limit threshold.
    """

    usage_bytes: int = Field(ge=0)
    limit_bytes: int = Field(gt=0)
    percentage: float = Field(ge=0.0)
    session_count: int = Field(ge=0)
    is_near_limit: bool


class SessionSummary(BaseModel):
    session_id: str
    message_count: int = Field(ge=0)
    last_activity_at: float
    size_bytes: int = Field(ge=0)
    is_active: bool


class FileCandidate(BaseModel):
    """A file picked by the user, not yet validated.

    Attributes:
        name: Filename including extension.
        size: Size in bytes.
        mime_type: Declared MIME type, may be empty on some mobile browsers.
        content: Raw bytes sent to the backend.
    """

    name: str
    size: int = Field(ge=0)
    mime_type: str = ""
    content: bytes = Field(default=b"", repr=False)


class ValidationResult(BaseModel):
    is_valid: bool
    error: str | None = None
    name: str | None = None


class RunRequest(BaseModel):
    """Request payload for one streamed agent run.

    Attributes:
        message: The user's message text.
        files: Validated files to upload with the message.
        session_id: Backend session for conversation continuity.
        user_id: Persistent user identifier.
    """

    message: str = Field(..., min_length=1)
    files: list[FileCandidate] = Field(default_factory=list)
    session_id: str | None = None
    user_id: str

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: str) -> str:
        """Strip whitespace from message before validation."""
        if isinstance(v, str):
            return v.strip()
        return v


class SubmitResult(BaseModel):
    """Outcome of a submitted turn."""

    state: TurnState
    generation: int
    user_message_id: str
    agent_message_id: str
    rejected: list[ValidationResult] = Field(default_factory=list)


class SessionSnapshot(BaseModel):
    """Current conversation as exposed over HTTP.

    Attributes:
        session_id: Active local session, None before the first submission.
        user_id: Persistent user identifier.
        state: State of the latest turn.
        status: Progress flags of the latest turn.
        is_streaming: Whether an agent message is in flight.
        messages: Messages of the active session.
        storage_error: Last storage-full notice, if any.
    """

    session_id: str | None = None
    user_id: str
    state: TurnState
    status: StreamingStatus
    is_streaming: bool
    messages: list[Message] = Field(default_factory=list)
    storage_error: str | None = None
