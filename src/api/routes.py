"""HTTP endpoints for chat submission, session and storage management.

Every route works on the coordinator stored on the application state.
Submission refusals map to 4xx responses; a refused submission never
reaches the agent backend.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from src.chat.coordinator import UploadCoordinator
from src.chat.errors import (
    AttachmentValidationError,
    EmptySubmissionError,
    StreamBusyError,
)
from src.chat.watchdog import detect_device_class
from src.models.schemas import (
    FileCandidate,
    SessionSnapshot,
    SessionSummary,
    StorageStats,
    SubmitResult,
)

logger = logging.getLogger(__name__)

chat_router = APIRouter(prefix="/chat", tags=["chat"])
sessions_router = APIRouter(prefix="/sessions", tags=["sessions"])
storage_router = APIRouter(prefix="/storage", tags=["storage"])


def get_coordinator(request: Request) -> UploadCoordinator:
    """Return the coordinator of the application root."""
    return request.app.state.coordinator


Coordinator = Annotated[UploadCoordinator, Depends(get_coordinator)]


def snapshot(coordinator: UploadCoordinator) -> SessionSnapshot:
    session = coordinator.session
    return SessionSnapshot(
        session_id=session.session_id if session else None,
        user_id=coordinator.user_id,
        state=coordinator.state,
        status=coordinator.status,
        is_streaming=coordinator.is_streaming,
        messages=list(coordinator.store.messages),
        storage_error=coordinator.storage_error,
    )


async def _read_candidates(files: list[UploadFile]) -> list[FileCandidate]:
    candidates = []
    for file in files:
        content = await file.read()
        candidates.append(
            FileCandidate(
                name=file.filename or "",
                size=len(content),
                mime_type=file.content_type or "",
                content=content,
            )
        )
    return candidates


@chat_router.post("", response_model=SubmitResult)
async def submit_turn(
    request: Request,
    coordinator: Coordinator,
    message: Annotated[str, Form()] = "",
    files: Annotated[list[UploadFile] | None, File()] = None,
) -> SubmitResult:
    """Submit a user turn and wait for the agent's answer.

    Args:
        message: User message text, may be empty when files are attached.
        files: Attachments (multipart/form-data).

    Returns:
        Terminal state of the turn and any rejected files.

    Raises:
        400: Neither text nor a valid file.
        409: A response is still streaming.
    """
    coordinator.device_class = detect_device_class(request.headers.get("user-agent"))
    candidates = await _read_candidates(files or [])

    try:
        return await coordinator.submit(message, candidates)
    except StreamBusyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except AttachmentValidationError as e:
        logger.warning(f"Submission refused, all attachments rejected: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.errors,
        ) from e
    except EmptySubmissionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e


@sessions_router.get("", response_model=list[SessionSummary])
async def list_sessions(coordinator: Coordinator) -> list[SessionSummary]:
    """List persisted sessions, most recent first."""
    return coordinator.budget.list_sessions()


@sessions_router.get("/current", response_model=SessionSnapshot)
async def current_session(coordinator: Coordinator) -> SessionSnapshot:
    """Return the active conversation.

    Raises:
        404: No conversation has been started yet.
    """
    if coordinator.session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active session",
        )
    return snapshot(coordinator)


@sessions_router.post("/reset", response_model=SessionSnapshot)
async def reset_session(coordinator: Coordinator) -> SessionSnapshot:
    """Abort any stream in flight and start a new session for the same user."""
    coordinator.reset()
    return snapshot(coordinator)


@storage_router.get("/stats", response_model=StorageStats)
async def storage_stats(coordinator: Coordinator) -> StorageStats:
    return coordinator.budget.get_stats()


@storage_router.post("/cleanup", response_model=StorageStats)
async def storage_cleanup(coordinator: Coordinator) -> StorageStats:
    """Evict old sessions now. The active session is kept."""
    stats = coordinator.budget.force_cleanup()
    logger.info(f"Manual cleanup left {stats.session_count} sessions")
    return stats
