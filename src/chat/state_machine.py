"""Per-turn state machine driven by stream events.

Every event of the current generation moves the turn between states and
edits the in-flight agent message. Progress flags shown by the UI are
computed from the state, never stored next to it.
"""

import asyncio
import logging
import re
from collections.abc import Callable

from src.chat.errors import ChatError, ServerError, StreamTimeoutError, TransportError
from src.chat.generation import GenerationCounter
from src.chat.message_store import MessageStore
from src.models.schemas import ExtraData, Message, StreamingStatus, TurnState
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
)

logger = logging.getLogger(__name__)

NO_CONTENT_NOTICE = "No content received. Please try again."
TIMEOUT_NOTICE = (
    "Timeout: the request took too long. "
    "Try again with a smaller file or a more stable connection."
)
CANCELLED_NOTICE = "Request cancelled before the answer finished. Please send it again."

_STATUS_MARKER = re.compile(r"<Response \[(\d{3})\]>")

StatusListener = Callable[[StreamingStatus], None]
TerminalListener = Callable[[TurnState], None]


def describe_server_error(raw: str) -> tuple[str, bool]:
    """Map a backend error text to a user-facing description.

    FastAPI-style backends embed the failed upstream call as
    ``<Response [NNN]>``.

    Args:
        raw: Error text of a RunError record.

    Returns:
        Tuple of (description, whether the backend session must be dropped).
    """
    if "[400]" in raw:
        if "contents.parts must not be empty" in raw or "INVALID_ARGUMENT" in raw:
            return "Invalid message format. The session will be reset to prevent repeated errors.", True
        return "Invalid request. Check your message and try again.", True
    if "[401]" in raw:
        return "Unauthorized: invalid API key. Please contact the administrator.", False
    if "[403]" in raw:
        return "Forbidden: access denied. Please check your credentials.", False
    if "[429]" in raw:
        return "Too many requests. Please wait a moment and try again.", False
    if "[500]" in raw:
        return "Internal server error. Please try again in a few minutes.", False
    match = _STATUS_MARKER.search(raw)
    if match:
        code = match.group(1)
        return f"Server error ({code}). Try again or contact the administrator.", code.startswith("4")
    if "<Response [" in raw:
        return "Server error (unknown). Try again or contact the administrator.", False
    return raw or "Unknown error occurred", False


def format_error_notice(event: RunError) -> tuple[str, bool]:
    """Build the agent message text for a failed run.

    Returns:
        Tuple of (notice, whether the backend session must be dropped).
    """
    if event.source == "transport":
        return f"Connection error: {event.message}", False
    description, reset_remote = describe_server_error(event.message)
    return f"Error: {description}", reset_remote


class ConversationStateMachine:
    """State of the current turn of one session.

    Args:
        store: Message store of the session.
        generations: Counter shared across the application.
        session_key: Key of this session in the counter.
        completion_grace: Seconds the completed flag stays visible.
    """

    def __init__(
        self,
        store: MessageStore,
        generations: GenerationCounter,
        session_key: str,
        completion_grace: float = 1.0,
    ) -> None:
        self._store = store
        self._generations = generations
        self.session_key = session_key
        self._completion_grace = completion_grace

        self._state = TurnState.IDLE
        self._tool_name: str | None = None
        self._show_completed = False
        self._status_listeners: list[StatusListener] = []
        self._terminal_listeners: list[TerminalListener] = []

        self.remote_session_id: str | None = None
        self.requires_new_remote_session = False
        self.last_error: ChatError | None = None

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def tool_name(self) -> str | None:
        return self._tool_name

    @property
    def generation(self) -> int:
        return self._generations.current(self.session_key)

    @property
    def status(self) -> StreamingStatus:
        """Progress flags for the UI, derived from the current state."""
        state = self._state
        return StreamingStatus(
            is_thinking=state is TurnState.THINKING,
            is_calling_tool=state is TurnState.CALLING_TOOL,
            tool_name=self._tool_name if state is TurnState.CALLING_TOOL else None,
            is_accessing_knowledge=state is TurnState.ACCESSING_KNOWLEDGE,
            is_memory_update_started=state is TurnState.UPDATING_MEMORY,
            has_completed=state is TurnState.COMPLETED and self._show_completed,
        )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a callback run after every applied event."""
        self._status_listeners.append(listener)
        return lambda: self._status_listeners.remove(listener)

    def on_terminal(self, listener: TerminalListener) -> Callable[[], None]:
        """Register a callback run once per turn, when it completes or errors."""
        self._terminal_listeners.append(listener)
        return lambda: self._terminal_listeners.remove(listener)

    def begin_turn(self) -> int:
        """Start a new turn and return its generation token.

        Any event or timer still carrying an older token becomes inert.
        """
        generation = self._generations.advance(self.session_key)
        self._state = TurnState.IDLE
        self._tool_name = None
        self._show_completed = False
        self.last_error = None
        self._notify_status()
        return generation

    def dispatch(self, event: StreamEvent, generation: int) -> bool:
        """Apply one event to the turn.

        Args:
            event: Decoded stream event.
            generation: Token the event's stream was started with.

        Returns:
            True if the event was applied, False if it was dropped.
        """
        if not self._generations.is_current(self.session_key, generation):
            logger.debug(f"Dropping {type(event).__name__} from stale generation {generation}")
            return False
        if self._state.is_terminal:
            logger.debug(f"Dropping {type(event).__name__} after {self._state.value}")
            return False
        if not self._store.is_streaming:
            logger.warning(f"Dropping {type(event).__name__}: no agent message in flight")
            return False

        match event:
            case RunStarted(session_id=session_id):
                if session_id:
                    self.remote_session_id = session_id
                    self.requires_new_remote_session = False
                self._transition(TurnState.THINKING)
            case RunResponse(content=delta, extra_data=extra_data):
                self._store.update_trailing_agent_message(
                    lambda m: self._append_delta(m, delta, extra_data)
                )
            case ToolCallStarted(tool_name=tool_name):
                self._tool_name = tool_name
                self._transition(TurnState.CALLING_TOOL)
            case ToolCallCompleted():
                self._transition(TurnState.THINKING)
            case AccessingKnowledge():
                self._transition(TurnState.ACCESSING_KNOWLEDGE)
            case MemoryUpdateStarted():
                self._transition(TurnState.UPDATING_MEMORY)
            case MemoryUpdateCompleted():
                self._transition(TurnState.THINKING)
            case RunCompleted(content=final, extra_data=extra_data):
                self._complete(final, extra_data, generation)
            case RunError():
                self._fail(event)
            case _:
                logger.warning(f"Ignoring unrecognized event {event!r}")
                return False

        self._notify_status()
        return True

    def time_out(self, generation: int) -> bool:
        """Resolve the turn as timed out if it is still running.

        Advances the generation so a late terminal event is dropped.

        Returns:
            True if the timeout won the race, False if the turn had already
            resolved or was superseded.
        """
        if not self._generations.is_current(self.session_key, generation):
            return False
        if self._state.is_terminal or not self._store.is_streaming:
            return False

        def mark_timeout(message: Message) -> None:
            message.content = TIMEOUT_NOTICE
            message.error = True

        self._store.finalize_trailing_agent_message(mark_timeout)
        self._state = TurnState.ERRORED
        self.last_error = StreamTimeoutError(TIMEOUT_NOTICE)
        self._tool_name = None
        self._generations.advance(self.session_key)
        logger.warning(f"Turn of session {self.session_key} timed out")
        self._notify_status()
        self._notify_terminal()
        return True

    def abandon(self) -> bool:
        """Resolve the running turn as cancelled by the caller.

        Used when the submission itself is cancelled, so no terminal event
        or watchdog will arrive. Advances the generation.

        Returns:
            True if a running turn was resolved, False if there was none.
        """
        if self._state.is_terminal or not self._store.is_streaming:
            return False

        def mark_cancelled(message: Message) -> None:
            message.content = CANCELLED_NOTICE
            message.error = True

        self._store.finalize_trailing_agent_message(mark_cancelled)
        self._state = TurnState.ERRORED
        self._tool_name = None
        self.last_error = TransportError(CANCELLED_NOTICE)
        self._generations.advance(self.session_key)
        logger.warning(f"Turn of session {self.session_key} cancelled")
        self._notify_status()
        self._notify_terminal()
        return True

    @staticmethod
    def _append_delta(message: Message, delta: str, extra_data: ExtraData | None) -> None:
        message.content += delta
        if extra_data and extra_data.references:
            message.extra_data = ExtraData(references=extra_data.references)

    def _transition(self, state: TurnState) -> None:
        if state is not TurnState.CALLING_TOOL:
            self._tool_name = None
        self._state = state

    def _complete(self, final: str | None, extra_data: ExtraData | None, generation: int) -> None:
        def settle(message: Message) -> None:
            final_text = final or ""
            if len(final_text) > len(message.content):
                message.content = final_text
            elif not message.content.strip():
                message.content = NO_CONTENT_NOTICE
            if extra_data and extra_data.references:
                message.extra_data = ExtraData(references=extra_data.references)

        message = self._store.finalize_trailing_agent_message(settle)
        self._tool_name = None
        self._state = TurnState.COMPLETED
        self._show_completed = True
        logger.info(f"Turn completed with {len(message.content)} chars")
        self._notify_terminal()

        if self._completion_grace <= 0:
            self._show_completed = False
        else:
            asyncio.get_running_loop().call_later(
                self._completion_grace, self._end_grace, generation
            )

    def _end_grace(self, generation: int) -> None:
        if not self._generations.is_current(self.session_key, generation):
            return
        if self._state is TurnState.COMPLETED and self._show_completed:
            self._show_completed = False
            self._notify_status()

    def _fail(self, event: RunError) -> None:
        notice, reset_remote = format_error_notice(event)

        def mark_error(message: Message) -> None:
            message.content = notice
            message.error = True

        self._store.finalize_trailing_agent_message(mark_error)
        self._tool_name = None
        self._state = TurnState.ERRORED
        if event.source == "transport":
            self.last_error = TransportError(event.message)
        else:
            self.last_error = ServerError(event.message)
        if reset_remote:
            logger.warning(f"Dropping backend session {self.remote_session_id} after client error")
            self.remote_session_id = None
            self.requires_new_remote_session = True
        logger.error(f"Turn failed ({event.source}): {event.message}")
        self._notify_terminal()

    def _notify_status(self) -> None:
        status = self.status
        for listener in list(self._status_listeners):
            listener(status)

    def _notify_terminal(self) -> None:
        for listener in list(self._terminal_listeners):
            listener(self._state)
