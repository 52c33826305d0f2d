"""FastAPI application factory for the chat engine.

The application root owns one coordinator. The lifespan restores its
session on startup and flushes pending session writes on shutdown.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import chat_router, sessions_router, storage_router
from src.chat.coordinator import UploadCoordinator, build_coordinator
from src.chat.errors import StorageFullError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown lifecycle.

    Restores the current session on startup and writes any scheduled
    session update on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application while it runs.
    """
    coordinator: UploadCoordinator = app.state.coordinator
    logger.info("Starting chat engine...")
    coordinator.restore()
    yield
    logger.info("Shutting down chat engine...")
    try:
        coordinator.budget.flush()
    except StorageFullError as e:
        logger.error(f"Could not save pending sessions on shutdown: {e}")


def create_app(coordinator: UploadCoordinator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        coordinator: Optional coordinator for the application root.
                     Built from environment configuration if not provided.

    Returns:
        Configured FastAPI application instance.
    """
    application = FastAPI(
        title="Chat Engine API",
        description=(
            "Streaming chat engine for agent backends. Submits user turns with "
            "validated attachments, assembles streamed answers, and keeps "
            "conversations in a size-bounded local store."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    application.state.coordinator = coordinator or build_coordinator()

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    application.include_router(chat_router)
    application.include_router(sessions_router)
    application.include_router(storage_router)

    @application.get("/health")
    async def health_check() -> dict[str, str]:
        """Check service health status."""
        return {"status": "healthy", "service": "chat-engine"}

    return application
