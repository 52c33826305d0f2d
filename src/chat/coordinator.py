"""Submission orchestration for one chat.

The coordinator validates files, appends the user and agent messages,
runs the stream in a task raced by the watchdog, and keeps the session
record and the identity record in storage up to date.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable

import httpx

from src.chat.config import ChatConfig, get_chat_config
from src.chat.errors import (
    AttachmentValidationError,
    EmptySubmissionError,
    StorageFullError,
    StreamBusyError,
)
from src.chat.generation import GenerationCounter
from src.chat.message_store import MessageStore
from src.chat.state_machine import ConversationStateMachine
from src.chat.watchdog import DeviceClass, Watchdog, watchdog_threshold
from src.models.schemas import (
    Attachment,
    ConversationSession,
    FileCandidate,
    Message,
    RunRequest,
    SessionIdentity,
    StreamingStatus,
    SubmitResult,
    TurnState,
)
from src.storage.areas import FileArea, KeyValueArea
from src.storage.budget import StorageBudgetManager
from src.streaming.events import RunError
from src.streaming.ingestor import EventStreamIngestor
from src.uploads.validator import resolve_mime_type, validate_many

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


def new_session_id() -> str:
    return f"chat_{uuid.uuid4().hex}"


def new_user_id() -> str:
    return f"user_{uuid.uuid4().hex[:12]}"


class UploadCoordinator:
    """Owns the active session of a chat and runs its turns.

    Args:
        config: Chat configuration.
        budget: Storage manager shared by every session of the user.
        ingestor: Streaming client for the backend.
        generations: Counter shared at the application root.
        store: Message store of the active session.
    """

    def __init__(
        self,
        config: ChatConfig,
        budget: StorageBudgetManager,
        ingestor: EventStreamIngestor,
        generations: GenerationCounter | None = None,
        store: MessageStore | None = None,
    ) -> None:
        self._config = config
        self._budget = budget
        self._ingestor = ingestor
        self._generations = generations or GenerationCounter()
        self.store = store or MessageStore()

        self.user_id = new_user_id()
        self.session: ConversationSession | None = None
        self.device_class = DeviceClass.DESKTOP
        self.storage_error: str | None = None

        self._chat_key = f"chat_{uuid.uuid4().hex[:8]}"
        self._machine = ConversationStateMachine(
            self.store,
            self._generations,
            self._chat_key,
            completion_grace=config.completion_grace_seconds,
        )
        self._watchdog = Watchdog(config.watchdog_desktop_seconds)
        self._task: asyncio.Task | None = None
        self._listeners: list[Listener] = []
        self._restoring = False

        self.store.subscribe(self._on_store_change)
        self._machine.subscribe(lambda _status: self._notify())
        self._machine.on_terminal(self._on_terminal)
        self._budget.on_storage_error = self._on_storage_error

    @property
    def machine(self) -> ConversationStateMachine:
        return self._machine

    @property
    def status(self) -> StreamingStatus:
        return self._machine.status

    @property
    def state(self) -> TurnState:
        return self._machine.state

    @property
    def is_streaming(self) -> bool:
        return self.store.is_streaming

    @property
    def budget(self) -> StorageBudgetManager:
        return self._budget

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback run after messages, status or storage change."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def submit(
        self, text: str | None, files: list[FileCandidate] | None = None
    ) -> SubmitResult:
        """Send a user turn and wait until it resolves.

        Invalid files are dropped; the rest of the submission proceeds.

        Args:
            text: User message, may be empty when files are attached.
            files: Files picked by the user.

        Returns:
            Terminal state of the turn and the files that were rejected.

        Raises:
            StreamBusyError: If a turn is already streaming.
            AttachmentValidationError: If files were given but none is valid
                and there is no text.
            EmptySubmissionError: If there is neither text nor a file.
        """
        if self.is_streaming:
            raise StreamBusyError("A response is still streaming. Wait for it to finish.")

        text = (text or "").strip()
        accepted, rejected = validate_many(files or [])
        if not text and not accepted:
            if rejected:
                raise AttachmentValidationError([r.error or "Invalid file" for r in rejected])
            raise EmptySubmissionError("Type a message or attach a file.")

        message = text or self._config.default_file_prompt
        session = self._ensure_session()
        if self._machine.requires_new_remote_session:
            session.remote_session_id = None

        user_message = self.store.add_message(
            Message(
                role="user",
                content=message,
                attachments=[
                    Attachment(
                        name=f.name,
                        size=f.size,
                        mime_type=resolve_mime_type(f) or f.mime_type,
                    )
                    for f in accepted
                ]
                or None,
            )
        )
        agent_message = self.store.begin_agent_message()
        generation = self._machine.begin_turn()

        self._watchdog.threshold = watchdog_threshold(self._config, self.device_class)
        self._watchdog.arm(generation, self._on_watchdog)

        request = RunRequest(
            message=message,
            files=accepted,
            session_id=self._machine.remote_session_id,
            user_id=self.user_id,
        )
        logger.info(
            f"Submitting turn {generation} of session {session.session_id} "
            f"({len(accepted)} files, {len(rejected)} rejected)"
        )

        task = asyncio.create_task(
            self._ingestor.stream(
                request, lambda event: self._machine.dispatch(event, generation)
            )
        )
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            logger.warning(f"Submission of turn {generation} cancelled")
            self._machine.abandon()
            self._abort()
            raise
        finally:
            if self._task is task:
                self._task = None

        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            logger.error(f"Stream task failed: {exc!r}")
            self._machine.dispatch(RunError(message=str(exc), source="transport"), generation)

        error = self._machine.last_error
        if error is not None:
            logger.warning(f"Turn {generation} ended with {type(error).__name__}: {error}")

        self._watchdog.disarm()
        return SubmitResult(
            state=self._machine.state,
            generation=generation,
            user_message_id=user_message.id,
            agent_message_id=agent_message.id,
            rejected=rejected,
        )

    def reset(self) -> ConversationSession:
        """Abandon the current conversation and start a new session.

        The stream in flight is aborted and every callback it scheduled
        becomes inert. The user id is kept.

        Returns:
            The new, empty session.
        """
        old = self.session
        self._abort()
        if old is not None:
            self._budget.remove(old.session_id)

        self.session = None
        self.store.reset()
        self._machine.remote_session_id = None
        self._machine.requires_new_remote_session = False
        self._machine.begin_turn()

        session = self._new_session()
        logger.info(
            f"Chat reset: {old.session_id if old else None} -> {session.session_id}"
        )
        return session

    def restore(self) -> ConversationSession | None:
        """Reload the current session at startup.

        Expired sessions other than the current one are evicted.

        Returns:
            The restored session, or None if there was none.
        """
        identity = self._budget.load_identity()
        session = None
        if identity is not None:
            self.user_id = identity.user_id
            if identity.current_session_id:
                self._budget.active_session_id = identity.current_session_id
                session = self._budget.load(identity.current_session_id)

        self._budget.evict_expired()

        if session is not None:
            self.session = session
            self._machine.remote_session_id = session.remote_session_id
            self._restoring = True
            try:
                self.store.load(session.messages)
            finally:
                self._restoring = False
            logger.info(
                f"Restored session {session.session_id} with {len(session.messages)} messages"
            )
        elif identity is None:
            self._save_identity(SessionIdentity(user_id=self.user_id))
        return session

    def _ensure_session(self) -> ConversationSession:
        if self.session is None:
            return self._new_session()
        return self.session

    def _new_session(self) -> ConversationSession:
        session = ConversationSession(
            session_id=new_session_id(),
            user_id=self.user_id,
            agent_id=self._config.agent_id,
        )
        self.session = session
        self._budget.active_session_id = session.session_id
        self._save_identity(
            SessionIdentity(current_session_id=session.session_id, user_id=self.user_id)
        )
        return session

    def _save_identity(self, identity: SessionIdentity) -> None:
        try:
            self._budget.save_identity(identity)
        except StorageFullError as e:
            self._on_storage_error(e)

    def _abort(self) -> None:
        self._generations.advance(self._chat_key)
        self._watchdog.disarm()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _on_watchdog(self, generation: int) -> None:
        if self._machine.time_out(generation) and self._task is not None:
            self._task.cancel()

    def _on_store_change(self) -> None:
        if self.session is None or self._restoring:
            return
        self.session.messages = list(self.store.messages)
        self.session.last_activity_at = time.time()
        self._budget.schedule_persist(self.session)
        self._notify()

    def _on_terminal(self, state: TurnState) -> None:
        self._watchdog.disarm()
        session = self.session
        if session is None:
            return
        session.messages = list(self.store.messages)
        session.remote_session_id = self._machine.remote_session_id
        session.last_activity_at = time.time()
        try:
            self._budget.persist(session)
            self.storage_error = None
        except StorageFullError as e:
            self._on_storage_error(e)
        logger.debug(f"Flushed session {session.session_id} on {state.value}")

    def _on_storage_error(self, error: StorageFullError) -> None:
        logger.error(f"Storage full: {error}")
        self.storage_error = str(error)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()


def build_coordinator(
    config: ChatConfig | None = None,
    client: httpx.AsyncClient | None = None,
    area: KeyValueArea | None = None,
    generations: GenerationCounter | None = None,
) -> UploadCoordinator:
    """Wire a coordinator with its storage and streaming client.

    Args:
        config: Optional chat configuration.
                Loads from environment if not provided.
        client: Optional shared HTTP client for the backend.
        area: Optional storage area. Defaults to files under storage_dir.
        generations: Optional counter shared with other coordinators.

    Returns:
        Configured UploadCoordinator.
    """
    config = config or get_chat_config()
    if area is None:
        area = FileArea(config.storage_dir, config.storage_limit_bytes)
    budget = StorageBudgetManager(area, config)
    ingestor = EventStreamIngestor(config, client)
    return UploadCoordinator(config, budget, ingestor, generations=generations)
