"""Chat Engine - streaming conversations with agent backends.

Combines httpx for event streaming, FastAPI for the HTTP surface,
NiceGUI for the chat page, and Pydantic for data validation.

Components:
    - chat: State machine, message store, watchdog and submission flow
    - streaming: Stream decoding and typed events
    - storage: Session persistence under a storage budget
    - uploads: Attachment validation
    - api: HTTP endpoints for submission, sessions and storage
    - ui: Web interface for chat interactions
    - models: Shared schemas
"""

__version__ = "0.1.0"
