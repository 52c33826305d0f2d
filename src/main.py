"""Main application entry point.

Runs FastAPI (port 8000) with the NiceGUI chat page mounted on the same
server. Environment variables are loaded from .env file.
"""

import logging
import os
import sys

from dotenv import load_dotenv

# Load environment variables before any other imports that might need them
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def run_integrated() -> None:
    """Run FastAPI with NiceGUI mounted on the same server.

    FastAPI handles the API routes, NiceGUI the chat page. Both share one
    coordinator, so the page and the HTTP surface see the same session.
    """
    import uvicorn
    from nicegui import ui

    from src.api.app import create_app
    from src.chat.coordinator import build_coordinator
    from src.ui.chat_page import register_chat_page

    coordinator = build_coordinator()
    app = create_app(coordinator)
    register_chat_page(coordinator)

    # Mount NiceGUI onto FastAPI
    ui.run_with(
        app,
        title="Legal Assistant",
        favicon="⚖️",
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "chat-engine-secret"),
    )

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting integrated server on http://localhost:{port}")
    logger.info(f"API docs available at http://localhost:{port}/docs")
    logger.info(f"Chat UI available at http://localhost:{port}/")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


def main() -> None:
    """Application entry point."""
    logger.info("Starting chat engine")
    run_integrated()


if __name__ == "__main__":
    main()
