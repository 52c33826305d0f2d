"""FastAPI endpoints for the chat engine.

Endpoints:
    - GET /health: Service health status
    - POST /chat: Submit a user turn with optional attachments
    - GET /sessions: Persisted session summaries
    - GET /sessions/current: Active conversation
    - POST /sessions/reset: Start a new session for the same user
    - GET /storage/stats: Local storage usage
    - POST /storage/cleanup: Evict old sessions
"""

from src.api.app import create_app

__all__ = ["create_app"]
