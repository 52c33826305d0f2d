"""Generation tokens that make abandoned streams and timers inert."""

import logging
from collections import defaultdict

logger = logging.getLogger(__name__)


class GenerationCounter:
    """Monotonic per-session counters shared by all sessions.

    A callback captures the token current when it was scheduled. Once the
    session advances (new turn, timeout, reset) the captured token is stale
    and the callback must do nothing.
    """

    def __init__(self) -> None:
        self._counters: defaultdict[str, int] = defaultdict(int)

    def current(self, session_key: str) -> int:
        return self._counters[session_key]

    def advance(self, session_key: str) -> int:
        """Invalidate every outstanding token of a session and issue a new one."""
        self._counters[session_key] += 1
        token = self._counters[session_key]
        logger.debug(f"Session {session_key} advanced to generation {token}")
        return token

    def is_current(self, session_key: str, token: int) -> bool:
        return self._counters[session_key] == token
