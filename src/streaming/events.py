"""Typed stream events and parsing of wire records.

The backend sends one JSON object per event. `parse_event` turns a decoded
record into one of the event models below, so consumers can `match` on the
class instead of comparing event strings.
"""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from src.chat.errors import ProtocolError
from src.models.schemas import ExtraData


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str | None = None


class RunStarted(_Event):
    pass


class RunResponse(_Event):
    """A content delta appended to the streaming answer."""

    content: str = ""
    extra_data: ExtraData | None = None


class ToolCallStarted(_Event):
    tool_name: str | None = None


class ToolCallCompleted(_Event):
    pass


class AccessingKnowledge(_Event):
    pass


class MemoryUpdateStarted(_Event):
    pass


class MemoryUpdateCompleted(_Event):
    pass


class RunCompleted(_Event):
    """End of a run. `content` may repeat the full answer, or be absent."""

    content: str | None = None
    extra_data: ExtraData | None = None


class RunError(_Event):
    """End of a run with an error.

    Attributes:
        message: Raw error text from the backend or the transport.
        source: "server" for RunError records, "transport" when synthesized
            by the ingestor after a channel failure.
    """

    message: str
    source: Literal["server", "transport"] = "server"


StreamEvent = (
    RunStarted
    | RunResponse
    | ToolCallStarted
    | ToolCallCompleted
    | AccessingKnowledge
    | MemoryUpdateStarted
    | MemoryUpdateCompleted
    | RunCompleted
    | RunError
)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (RunCompleted, RunError))


class _ToolFunction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None


class _ToolCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    function: _ToolFunction | None = None


class RunEventRecord(BaseModel):
    """Wire shape of a streamed record.

    Attributes:
        event: Event name.
        content: Text delta, final content, or error text.
        session_id: Backend session identifier.
        tool_calls: Tool calls, preferred source of the tool name.
        tools: Tools, fallback source of the tool name.
        extra_data: Knowledge base references.
        error: Error text when content is empty.
    """

    model_config = ConfigDict(extra="ignore")

    event: str
    content: Any = None
    session_id: str | None = None
    tool_calls: list[_ToolCall] | None = None
    tools: list[_ToolCall] | None = None
    extra_data: ExtraData | None = None
    error: str | None = None

    def tool_name(self) -> str | None:
        for calls in (self.tool_calls, self.tools):
            if calls and calls[0].function and calls[0].function.name:
                return calls[0].function.name
        return None


def _final_content(content: Any) -> str | None:
    if content is None or isinstance(content, str):
        return content
    try:
        return json.dumps(content, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(content)


def parse_event(record: dict[str, Any]) -> StreamEvent:
    """Build a typed event from a decoded wire record.

    Args:
        record: One decoded JSON object.

    Returns:
        The matching event model.

    Raises:
        ProtocolError: If the record is malformed or the event is unknown.
    """
    try:
        raw = RunEventRecord.model_validate(record)
    except ValidationError as e:
        raise ProtocolError(f"Malformed stream record: {e}") from e

    session_id = raw.session_id
    match raw.event:
        case "RunStarted":
            return RunStarted(session_id=session_id)
        case "RunResponse":
            if raw.content is not None and not isinstance(raw.content, str):
                raise ProtocolError("RunResponse content must be a string")
            return RunResponse(
                session_id=session_id,
                content=raw.content or "",
                extra_data=raw.extra_data,
            )
        case "ToolCallStarted":
            return ToolCallStarted(session_id=session_id, tool_name=raw.tool_name())
        case "ToolCallCompleted":
            return ToolCallCompleted(session_id=session_id)
        case "AccessingKnowledge":
            return AccessingKnowledge(session_id=session_id)
        case "MemoryUpdateStarted" | "UpdatingMemory":
            return MemoryUpdateStarted(session_id=session_id)
        case "MemoryUpdateCompleted":
            return MemoryUpdateCompleted(session_id=session_id)
        case "RunCompleted":
            return RunCompleted(
                session_id=session_id,
                content=_final_content(raw.content),
                extra_data=raw.extra_data,
            )
        case "RunError":
            text = raw.content if isinstance(raw.content, str) else None
            return RunError(
                session_id=session_id,
                message=text or raw.error or "Unknown error occurred",
            )
        case _:
            raise ProtocolError(f"Unknown stream event: {raw.event!r}")

