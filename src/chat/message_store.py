"""Append-only message list for one conversation.

The in-flight agent message is tracked by index, never found by scanning
for a marker. It is mutated in place so observers holding a reference
keep seeing the same object while it streams.
"""

import logging
from collections.abc import Callable

from src.models.schemas import Message

logger = logging.getLogger(__name__)

Mutator = Callable[[Message], None]
Listener = Callable[[], None]


class MessageStore:
    """Ordered messages of the active session.

    At most one agent message is in flight at a time. Its content may only
    grow through update_trailing_agent_message; the one-time replacement
    happens in finalize_trailing_agent_message, after which the message is
    frozen.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._inflight: int | None = None
        self._listeners: list[Listener] = []

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def trailing(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    @property
    def inflight_index(self) -> int | None:
        return self._inflight

    @property
    def is_streaming(self) -> bool:
        return self._inflight is not None

    def __len__(self) -> int:
        return len(self._messages)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback run after every mutation.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_message(self, message: Message) -> Message:
        """Append a finished message.

        Raises:
            RuntimeError: If an agent message is still in flight.
        """
        if self._inflight is not None:
            raise RuntimeError("Cannot append while an agent message is in flight")
        message.streaming = False
        self._messages.append(message)
        self._notify()
        return message

    def begin_agent_message(self, message: Message | None = None) -> Message:
        """Append an empty agent message and mark it in flight.

        Raises:
            RuntimeError: If another agent message is already in flight.
        """
        if self._inflight is not None:
            raise RuntimeError("An agent message is already in flight")
        message = message or Message(role="agent")
        if message.role != "agent":
            raise ValueError(f"In-flight message must be an agent message, got {message.role}")
        message.streaming = True
        self._messages.append(message)
        self._inflight = len(self._messages) - 1
        self._notify()
        return message

    def update_trailing_agent_message(self, mutator: Mutator) -> Message:
        """Apply a growing change to the in-flight message.

        Args:
            mutator: Callback that edits the message in place.

        Returns:
            The in-flight message, same object as before the call.

        Raises:
            RuntimeError: If nothing is in flight.
            ValueError: If the mutator shrank or rewrote existing content.
        """
        message = self._require_inflight()
        previous = message.content
        mutator(message)
        if not message.content.startswith(previous):
            message.content = previous
            raise ValueError("In-flight content may only grow")
        message.streaming = True
        self._notify()
        return message

    def finalize_trailing_agent_message(self, mutator: Mutator | None = None) -> Message:
        """Apply the terminal change and freeze the in-flight message.

        Raises:
            RuntimeError: If nothing is in flight.
        """
        message = self._require_inflight()
        if mutator is not None:
            mutator(message)
        message.streaming = False
        self._inflight = None
        self._notify()
        return message

    def reset(self) -> None:
        """Drop every message and the in-flight handle in one step."""
        self._messages = []
        self._inflight = None
        self._notify()

    def load(self, messages: list[Message]) -> None:
        """Replace the history with restored messages.

        Restored messages are never in flight: a stream that was interrupted
        by shutdown cannot resume.
        """
        for message in messages:
            message.streaming = False
        self._messages = list(messages)
        self._inflight = None
        self._notify()

    def _require_inflight(self) -> Message:
        if self._inflight is None:
            raise RuntimeError("No agent message is in flight")
        return self._messages[self._inflight]

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
