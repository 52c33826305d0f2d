"""Streaming client for agent runs.

Opens one long-lived POST per submission and feeds every decoded event to
a callback, strictly in transmission order. Failures never raise to the
caller: they arrive as a synthesized RunError, so the turn always resolves
through the same event path.
"""

import contextlib
import logging
from collections.abc import Callable

import httpx

from src.chat.config import ChatConfig, get_chat_config
from src.chat.errors import ProtocolError, TransportError
from src.models.schemas import RunRequest
from src.streaming.decoder import RecordDecoder
from src.streaming.events import (
    RunCompleted,
    RunError,
    StreamEvent,
    is_terminal,
    parse_event,
)
from src.uploads.validator import resolve_mime_type

logger = logging.getLogger(__name__)

EventCallback = Callable[[StreamEvent], None]


def describe_http_status(status_code: int, body: str = "") -> str:
    """Turn an HTTP error status into a user-facing message."""
    if status_code == 429:
        return "Too many requests. Please wait a moment before trying again."
    if status_code == 413:
        return "File too large. Please use a smaller file."
    detail = f" {body.strip()[:200]}" if body.strip() else ""
    return f"Stream request failed: HTTP {status_code}.{detail}"


class EventStreamIngestor:
    """Client for the agent runs endpoint.

    Wraps httpx with:
    - Multipart request building (message, form flags, files)
    - Incremental record decoding across arbitrary chunk boundaries
    - Transport failures mapped to a synthesized RunError
    """

    def __init__(
        self,
        config: ChatConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the ingestor.

        Args:
            config: Optional chat configuration.
                    Loads from environment if not provided.
            client: Optional shared HTTP client. A short-lived client is
                    created per stream when omitted.
        """
        self._config = config or get_chat_config()
        self._client = client

    def _client_context(self) -> contextlib.AbstractAsyncContextManager[httpx.AsyncClient]:
        if self._client is not None:
            return contextlib.nullcontext(self._client)
        timeout = httpx.Timeout(self._config.request_timeout, connect=30.0)
        return httpx.AsyncClient(timeout=timeout)

    def build_form(
        self, request: RunRequest
    ) -> tuple[dict[str, str], list[tuple[str, tuple[str, bytes, str]]]]:
        """Build multipart fields and files for a run.

        Args:
            request: The run to send.

        Returns:
            Tuple of (form fields, files list for httpx).
        """
        data = {
            "message": request.message,
            "agent_id": self._config.agent_id,
            "stream": "true",
            "monitor": "false",
            "session_id": request.session_id or "",
            "user_id": request.user_id,
        }
        files = [
            (
                "files",
                (f.name, f.content, resolve_mime_type(f) or "application/octet-stream"),
            )
            for f in request.files
        ]
        return data, files

    def build_headers(self, request: RunRequest) -> dict[str, str]:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            "X-User-ID": request.user_id,
        }
        if self._config.api_key:
            headers["X-API-Key"] = self._config.api_key
        return headers

    async def stream(self, request: RunRequest, on_event: EventCallback) -> StreamEvent:
        """Run one streamed exchange.

        Calls on_event once per decoded event and stops at the first terminal
        event. Cancelling the awaiting task aborts the channel.

        Args:
            request: Message, files and session identifiers to send.
            on_event: Callback invoked for each event in arrival order.

        Returns:
            The terminal event that ended the stream.
        """
        data, files = self.build_form(request)
        decoder = RecordDecoder()
        logger.info(
            f"Opening stream to {self._config.runs_url} "
            f"(message {len(request.message)} chars, {len(files)} files)"
        )

        try:
            async with self._client_context() as client:
                async with client.stream(
                    "POST",
                    self._config.runs_url,
                    data=data,
                    files=files or None,
                    headers=self.build_headers(request),
                ) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise TransportError(describe_http_status(response.status_code, body))

                    async for text in response.aiter_text():
                        terminal = self._deliver(decoder.feed(text), on_event)
                        if terminal is not None:
                            return terminal
        except TransportError as e:
            logger.error(f"Stream request failed: {e}")
            return self._synthesize(RunError(message=str(e), source="transport"), on_event)
        except httpx.HTTPError as e:
            logger.error(f"Stream transport error: {e!r}")
            message = f"Connection failed: {e}" if str(e) else "Connection failed"
            return self._synthesize(RunError(message=message, source="transport"), on_event)
        finally:
            decoder.close()

        logger.warning("Stream closed without a terminal event")
        return self._synthesize(RunCompleted(), on_event)

    @staticmethod
    def _deliver(records: list[dict], on_event: EventCallback) -> StreamEvent | None:
        for record in records:
            try:
                event = parse_event(record)
            except ProtocolError as e:
                logger.warning(f"Ignoring stream record: {e}")
                continue
            on_event(event)
            if is_terminal(event):
                return event
        return None

    @staticmethod
    def _synthesize(event: StreamEvent, on_event: EventCallback) -> StreamEvent:
        on_event(event)
        return event
