"""Session persistence under a storage budget.

Sessions are stored as ``session:<id>`` records next to one small
``identity`` record. Usage is the UTF-8 size of every session record; the
identity record is not counted and never evicted.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from pydantic import BaseModel, ValidationError

from src.chat.config import ChatConfig, get_chat_config
from src.chat.errors import QuotaExceededError, StorageFullError
from src.models.schemas import (
    ConversationSession,
    SessionIdentity,
    SessionSummary,
    StorageStats,
)
from src.storage.areas import KeyValueArea, record_size

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
IDENTITY_KEY = "identity"

StorageErrorCallback = Callable[[StorageFullError], None]


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


class _SessionRecord(BaseModel):
    session_id: str
    size_bytes: int
    last_activity_at: float
    message_count: int


class StorageBudgetManager:
    """Persists sessions and keeps the area under its budget.

    Args:
        area: Key-value area holding the records.
        config: Optional chat configuration.
                Loads from environment if not provided.
        on_storage_error: Receives StorageFullError raised by debounced
                writes, which have no caller to raise to.
    """

    def __init__(
        self,
        area: KeyValueArea,
        config: ChatConfig | None = None,
        on_storage_error: StorageErrorCallback | None = None,
    ) -> None:
        self._area = area
        self._config = config or get_chat_config()
        self.on_storage_error = on_storage_error
        self.active_session_id: str | None = None
        self._pending: dict[str, ConversationSession] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def limit_bytes(self) -> int:
        return self._config.storage_limit_bytes

    def persist(self, session: ConversationSession) -> StorageStats:
        """Write a session now.

        Replaces any scheduled write of the same session. Sessions beyond
        max_stored_sessions are evicted oldest first, and if usage ends up
        near the limit, older sessions are reclaimed right away.

        Returns:
            Stats after the write.

        Raises:
            StorageFullError: If the write fails again after cleanup.
        """
        self._cancel_pending(session.session_id)
        key = session_key(session.session_id)
        value = session.model_dump_json()
        self._write(key, value, protect=session.session_id)
        self._enforce_session_cap(protect=session.session_id)

        stats = self.get_stats()
        if stats.is_near_limit:
            logger.warning(
                f"Storage near limit ({stats.percentage:.1f}%), reclaiming old sessions"
            )
            stats = self._reclaim(protect=session.session_id, at_least_one=False)
        return stats

    def schedule_persist(self, session: ConversationSession) -> None:
        """Write a session at the end of the current coalescing window.

        The first call opens the window; later calls inside it only replace
        the pending snapshot. Must be called from a running event loop.
        """
        self._pending[session.session_id] = session
        if session.session_id in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[session.session_id] = loop.call_later(
            self._config.persist_debounce_seconds,
            self._flush_scheduled,
            session.session_id,
        )

    def has_pending(self, session_id: str) -> bool:
        return session_id in self._pending

    def flush(self, session_id: str | None = None) -> None:
        """Write scheduled sessions immediately.

        Args:
            session_id: Flush only this session. Flushes all when None.

        Raises:
            StorageFullError: If a write fails again after cleanup.
        """
        ids = [session_id] if session_id is not None else list(self._pending)
        for sid in ids:
            session = self._pending.get(sid)
            if session is not None:
                self.persist(session)

    def load(self, session_id: str) -> ConversationSession | None:
        raw = self._area.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return ConversationSession.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding unreadable session {session_id}: {e}")
            return None

    def remove(self, session_id: str) -> bool:
        self._cancel_pending(session_id)
        removed = self._area.delete(session_key(session_id))
        if removed:
            logger.info(f"Removed session {session_id}")
        return removed

    def list_sessions(self) -> list[SessionSummary]:
        """Summaries of persisted sessions, most recent first."""
        records = sorted(self._records(), key=lambda r: r.last_activity_at, reverse=True)
        return [
            SessionSummary(
                session_id=r.session_id,
                message_count=r.message_count,
                last_activity_at=r.last_activity_at,
                size_bytes=r.size_bytes,
                is_active=r.session_id == self.active_session_id,
            )
            for r in records
        ]

    def get_stats(self) -> StorageStats:
        records = self._records()
        usage = sum(r.size_bytes for r in records)
        percentage = usage / self.limit_bytes * 100
        return StorageStats(
            usage_bytes=usage,
            limit_bytes=self.limit_bytes,
            percentage=percentage,
            session_count=len(records),
            is_near_limit=percentage > self._config.near_limit_percent,
        )

    def force_cleanup(self, protect: str | None = None) -> StorageStats:
        """Evict least recently active sessions to free space.

        Evicts at least one session when any is evictable, then continues
        until usage is under the reclaim target. The active session and
        ``protect`` are never evicted.

        Returns:
            Stats after eviction.
        """
        return self._reclaim(protect=protect, at_least_one=True)

    def evict_expired(self, now: float | None = None) -> list[str]:
        """Remove sessions idle for longer than the session TTL.

        Returns:
            IDs of removed sessions.
        """
        now = time.time() if now is None else now
        cutoff = now - self._config.session_ttl_days * 86400
        expired = [
            r.session_id
            for r in self._records()
            if r.last_activity_at < cutoff and r.session_id != self.active_session_id
        ]
        for sid in expired:
            self.remove(sid)
        if expired:
            logger.info(f"Evicted {len(expired)} expired sessions")
        return expired

    def load_identity(self) -> SessionIdentity | None:
        raw = self._area.get(IDENTITY_KEY)
        if raw is None:
            return None
        try:
            return SessionIdentity.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding unreadable identity record: {e}")
            return None

    def save_identity(self, identity: SessionIdentity) -> None:
        self._write(IDENTITY_KEY, identity.model_dump_json(), protect=identity.current_session_id)

    def _write(self, key: str, value: str, protect: str | None) -> None:
        try:
            self._area.set(key, value)
            return
        except QuotaExceededError as e:
            logger.warning(f"Quota exceeded writing {key}, running cleanup: {e}")

        self.force_cleanup(protect=protect)
        try:
            self._area.set(key, value)
        except QuotaExceededError as e:
            raise StorageFullError(
                "Local storage is full. Delete old conversations to keep saving."
            ) from e

    def _reclaim(self, protect: str | None, at_least_one: bool) -> StorageStats:
        target = self.limit_bytes * self._config.reclaim_target_percent / 100
        keep = {self.active_session_id, protect}
        records = self._records()
        usage = sum(r.size_bytes for r in records)
        candidates = sorted(
            (r for r in records if r.session_id not in keep),
            key=lambda r: r.last_activity_at,
        )

        evicted = 0
        for record in candidates:
            if usage < target and (evicted or not at_least_one):
                break
            self._cancel_pending(record.session_id)
            self._area.delete(session_key(record.session_id))
            usage -= record.size_bytes
            evicted += 1
            logger.info(
                f"Evicted session {record.session_id} ({record.size_bytes} bytes)"
            )

        stats = self.get_stats()
        logger.info(
            f"Cleanup evicted {evicted} sessions, usage now {stats.percentage:.1f}%"
        )
        return stats

    def _enforce_session_cap(self, protect: str | None) -> None:
        records = self._records()
        excess = len(records) - self._config.max_stored_sessions
        if excess <= 0:
            return
        keep = {self.active_session_id, protect}
        candidates = sorted(
            (r for r in records if r.session_id not in keep),
            key=lambda r: r.last_activity_at,
        )
        for record in candidates[:excess]:
            self._cancel_pending(record.session_id)
            self._area.delete(session_key(record.session_id))
            logger.info(f"Evicted session {record.session_id} over the session cap")

    def _records(self) -> list[_SessionRecord]:
        records = []
        for key in self._area.keys():
            if not key.startswith(SESSION_PREFIX):
                continue
            raw = self._area.get(key)
            if raw is None:
                continue
            session_id = key[len(SESSION_PREFIX):]
            try:
                session = ConversationSession.model_validate_json(raw)
                last_activity, count = session.last_activity_at, len(session.messages)
            except ValidationError:
                # unreadable records go first
                last_activity, count = 0.0, 0
            records.append(
                _SessionRecord(
                    session_id=session_id,
                    size_bytes=record_size(key, raw),
                    last_activity_at=last_activity,
                    message_count=count,
                )
            )
        return records

    def _flush_scheduled(self, session_id: str) -> None:
        self._timers.pop(session_id, None)
        session = self._pending.pop(session_id, None)
        if session is None:
            return
        try:
            self.persist(session)
        except StorageFullError as e:
            logger.error(f"Scheduled write of session {session_id} failed: {e}")
            if self.on_storage_error is not None:
                self.on_storage_error(e)

    def _cancel_pending(self, session_id: str) -> None:
        self._pending.pop(session_id, None)
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
