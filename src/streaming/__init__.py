"""Event stream ingestion for agent runs.

Decodes the backend's streamed JSON records into typed events.

Responsibilities:
    - Multipart run requests over httpx
    - Buffering partial records across network chunks
    - Parsing wire records into the StreamEvent union
    - Synthesizing a terminal event on transport failure or early close
"""

from src.streaming.decoder import RecordDecoder
from src.streaming.events import (
    AccessingKnowledge,
    MemoryUpdateCompleted,
    MemoryUpdateStarted,
    RunCompleted,
    RunError,
    RunResponse,
    RunStarted,
    StreamEvent,
    ToolCallCompleted,
    ToolCallStarted,
    is_terminal,
    parse_event,
)
from src.streaming.ingestor import EventStreamIngestor

__all__ = [
    "AccessingKnowledge",
    "EventStreamIngestor",
    "MemoryUpdateCompleted",
    "MemoryUpdateStarted",
    "RecordDecoder",
    "RunCompleted",
    "RunError",
    "RunResponse",
    "RunStarted",
    "StreamEvent",
    "ToolCallCompleted",
    "ToolCallStarted",
    "is_terminal",
    "parse_event",
]
