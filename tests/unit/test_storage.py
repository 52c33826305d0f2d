"""Unit tests for storage areas and the budget manager."""

import asyncio
import time

import pytest
import pytest_check as check

from src.chat.config import ChatConfig
from src.chat.errors import QuotaExceededError, StorageFullError
from src.models.schemas import ConversationSession, Message, SessionIdentity
from src.storage.areas import FileArea, MemoryArea, record_size
from src.storage.budget import StorageBudgetManager, session_key

DAY = 86400


def make_session(session_id: str, last_activity: float, payload: int = 1000) -> ConversationSession:
    return ConversationSession(
        session_id=session_id,
        user_id="user-1",
        last_activity_at=last_activity,
        messages=[Message(role="user", content="x" * payload)],
    )


def manager(
    chat_config: ChatConfig, limit: int, quota: int | None = None, area: MemoryArea | None = None
) -> StorageBudgetManager:
    config = chat_config.model_copy(update={"storage_limit_bytes": limit})
    return StorageBudgetManager(area or MemoryArea(quota_bytes=quota or limit), config)


class CountingArea(MemoryArea):
    def __init__(self, quota_bytes: int) -> None:
        super().__init__(quota_bytes)
        self.writes = 0

    def set(self, key: str, value: str) -> None:
        self.writes += 1
        super().set(key, value)


class TestMemoryArea:
    def test_quota_counts_key_and_value(self) -> None:
        area = MemoryArea(quota_bytes=10)
        area.set("ab", "cdefgh")

        with pytest.raises(QuotaExceededError):
            area.set("x", "yzabc")

    def test_overwrite_reuses_own_space(self) -> None:
        area = MemoryArea(quota_bytes=10)
        area.set("ab", "cdefgh")

        area.set("ab", "12345678")

        check.equal(area.get("ab"), "12345678")

    def test_delete(self) -> None:
        area = MemoryArea(quota_bytes=100)
        area.set("k", "v")

        check.is_true(area.delete("k"))
        check.is_false(area.delete("k"))
        check.equal(area.keys(), [])


class TestFileArea:
    def test_round_trip_with_colon_keys(self, tmp_path) -> None:
        area = FileArea(tmp_path / "store", quota_bytes=10_000)

        area.set("session:abc", '{"a": 1}')
        area.set("identity", "{}")

        check.equal(sorted(area.keys()), ["identity", "session:abc"])
        check.equal(area.get("session:abc"), '{"a": 1}')
        check.is_none(area.get("session:missing"))

    def test_records_survive_new_instance(self, tmp_path) -> None:
        FileArea(tmp_path, quota_bytes=10_000).set("session:abc", "ünïcode")

        check.equal(FileArea(tmp_path, quota_bytes=10_000).get("session:abc"), "ünïcode")

    def test_quota_enforced(self, tmp_path) -> None:
        area = FileArea(tmp_path, quota_bytes=50)
        area.set("session:a", "x" * 30)

        with pytest.raises(QuotaExceededError):
            area.set("session:b", "y" * 30)
        check.equal(area.keys(), ["session:a"])

    def test_delete(self, tmp_path) -> None:
        area = FileArea(tmp_path, quota_bytes=1000)
        area.set("session:a", "x")

        check.is_true(area.delete("session:a"))
        check.is_false(area.delete("session:a"))


class TestStats:
    def test_usage_sums_session_records(self, budget: StorageBudgetManager, memory_area) -> None:
        sessions = [make_session("a", 1), make_session("b", 2, payload=50)]
        for session in sessions:
            budget.persist(session)
        budget.save_identity(SessionIdentity(current_session_id="b", user_id="user-1"))

        stats = budget.get_stats()

        expected = sum(
            record_size(session_key(s.session_id), memory_area.get(session_key(s.session_id)))
            for s in sessions
        )
        check.equal(stats.usage_bytes, expected)
        check.equal(stats.session_count, 2)
        check.almost_equal(stats.percentage, expected / stats.limit_bytes * 100)
        check.is_false(stats.is_near_limit)

    def test_near_limit_above_eighty_percent(self, chat_config: ChatConfig) -> None:
        probe = manager(chat_config, limit=1_000_000)
        usage = probe.persist(make_session("a", 1)).usage_bytes

        near = manager(chat_config, limit=int(usage / 0.85), quota=1_000_000)
        far = manager(chat_config, limit=int(usage / 0.75), quota=1_000_000)

        check.is_true(near.persist(make_session("a", 1)).is_near_limit)
        check.is_false(far.persist(make_session("a", 1)).is_near_limit)


class TestForceCleanup:
    """Tests for oldest-first eviction."""

    def test_evicts_oldest_and_keeps_active(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=20_000)
        for i, sid in enumerate(["a", "b", "c", "d"]):
            budget.persist(make_session(sid, last_activity=i + 1, payload=1500))
        budget.active_session_id = "a"
        before = budget.get_stats()

        after = budget.force_cleanup()

        remaining = {s.session_id for s in budget.list_sessions()}
        check.is_in("a", remaining)
        check.is_not_in("b", remaining)
        check.less(after.percentage, before.percentage)

    def test_stops_under_reclaim_target(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=10_000)
        ids = ["s1", "s2", "s3", "s4", "s5"]
        for i, sid in enumerate(ids):
            budget._area.set(session_key(sid), make_session(sid, i + 1, payload=1300).model_dump_json())
        budget.active_session_id = "s5"

        stats = budget.force_cleanup()

        remaining = [s.session_id for s in budget.list_sessions()]
        check.is_in("s5", remaining)
        check.is_true(stats.percentage < 60 or remaining == ["s5"])
        # survivors are always the most recent ones
        check.equal(sorted(remaining), ids[len(ids) - len(remaining) :])

    def test_only_active_session_left(self, budget: StorageBudgetManager) -> None:
        budget.persist(make_session("only", 1))
        budget.active_session_id = "only"

        stats = budget.force_cleanup()

        check.equal(stats.session_count, 1)

    def test_count_one_or_percentage_decreased(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=1_000_000)
        for i in range(3):
            budget.persist(make_session(f"s{i}", i, payload=100))
        budget.active_session_id = "s2"
        before = budget.get_stats()

        after = budget.force_cleanup()

        check.is_true(after.session_count == 1 or after.percentage < before.percentage)
        check.is_in("s2", {s.session_id for s in budget.list_sessions()})

    def test_unreadable_record_evicted_first(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=1_000_000)
        budget.persist(make_session("good", 1, payload=10))
        budget._area.set(session_key("bad"), "{oops")

        budget.force_cleanup()

        check.is_none(budget.load("bad"))
        check.is_not_none(budget.load("good"))


class TestPersist:
    def test_near_limit_write_reclaims_old_sessions(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=10_000)
        for i, sid in enumerate(["a", "b", "c"]):
            budget.persist(make_session(sid, i + 1, payload=1700))
        budget.active_session_id = "d"

        stats = budget.persist(make_session("d", 10, payload=2500))

        remaining = {s.session_id for s in budget.list_sessions()}
        check.is_false(stats.is_near_limit)
        check.is_in("d", remaining)
        check.is_not_in("a", remaining)

    def test_quota_error_triggers_cleanup_and_retry(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=1_000_000, quota=5_000)
        budget.persist(make_session("a", 1, payload=1800))
        budget.persist(make_session("b", 2, payload=1800))
        budget.active_session_id = "c"

        budget.persist(make_session("c", 3, payload=1800))

        remaining = {s.session_id for s in budget.list_sessions()}
        check.equal(remaining, {"b", "c"})

    def test_storage_full_after_failed_retry(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=1_000_000, quota=500)
        budget.active_session_id = "big"

        with pytest.raises(StorageFullError):
            budget.persist(make_session("big", 1, payload=2000))

    def test_load_round_trip(self, budget: StorageBudgetManager) -> None:
        session = make_session("a", 1)
        budget.persist(session)

        check.equal(budget.load("a"), session)
        check.is_none(budget.load("missing"))

    def test_remove(self, budget: StorageBudgetManager) -> None:
        budget.persist(make_session("a", 1))

        check.is_true(budget.remove("a"))
        check.is_false(budget.remove("a"))
        check.equal(budget.get_stats().session_count, 0)

    def test_session_cap_evicts_oldest(self, chat_config: ChatConfig) -> None:
        config = chat_config.model_copy(update={"max_stored_sessions": 3})
        budget = StorageBudgetManager(MemoryArea(quota_bytes=1_000_000), config)
        budget.active_session_id = "s1"

        for i, sid in enumerate(["s1", "s2", "s3", "s4", "s5"]):
            budget.persist(make_session(sid, last_activity=i + 1, payload=10))

        remaining = [s.session_id for s in budget.list_sessions()]
        check.equal(remaining, ["s5", "s4", "s1"])

    def test_session_cap_default(self, chat_config: ChatConfig) -> None:
        budget = manager(chat_config, limit=1_000_000)
        for i in range(12):
            budget.persist(make_session(f"s{i}", last_activity=i, payload=10))

        check.equal(budget.get_stats().session_count, 10)
        check.is_none(budget.load("s0"))
        check.is_not_none(budget.load("s11"))


class TestScheduledPersist:
    """Tests for the coalescing write window."""

    async def test_mutations_in_window_coalesce(self, chat_config: ChatConfig) -> None:
        area = CountingArea(quota_bytes=1_000_000)
        budget = StorageBudgetManager(area, chat_config)
        session = make_session("a", 1, payload=1)

        for text in ["H", "Ha", "Halo"]:
            session.messages[0].content = text
            budget.schedule_persist(session)
        check.equal(area.writes, 0)

        await asyncio.sleep(0.05)

        check.equal(area.writes, 1)
        check.equal(budget.load("a").messages[0].content, "Halo")

    async def test_flush_writes_now(self, chat_config: ChatConfig) -> None:
        area = CountingArea(quota_bytes=1_000_000)
        budget = StorageBudgetManager(area, chat_config)

        budget.schedule_persist(make_session("a", 1))
        budget.flush()
        await asyncio.sleep(0.05)

        check.equal(area.writes, 1)
        check.is_false(budget.has_pending("a"))

    async def test_failed_scheduled_write_reported(self, chat_config: ChatConfig) -> None:
        errors: list[StorageFullError] = []
        budget = StorageBudgetManager(
            MemoryArea(quota_bytes=100), chat_config, on_storage_error=errors.append
        )

        budget.schedule_persist(make_session("a", 1, payload=500))
        await asyncio.sleep(0.05)

        check.equal(len(errors), 1)


class TestExpiryAndIdentity:
    def test_evict_expired_spares_active(self, budget: StorageBudgetManager) -> None:
        now = time.time()
        budget.persist(make_session("old", now - 8 * DAY))
        budget.persist(make_session("recent", now - DAY))
        budget.persist(make_session("active-old", now - 30 * DAY))
        budget.active_session_id = "active-old"

        removed = budget.evict_expired(now=now)

        check.equal(removed, ["old"])
        check.equal(
            {s.session_id for s in budget.list_sessions()}, {"recent", "active-old"}
        )

    def test_identity_round_trip_not_counted(self, budget: StorageBudgetManager) -> None:
        identity = SessionIdentity(current_session_id="s-1", user_id="user-1")

        budget.save_identity(identity)

        check.equal(budget.load_identity(), identity)
        check.equal(budget.get_stats().usage_bytes, 0)

    def test_list_sessions_most_recent_first(self, budget: StorageBudgetManager) -> None:
        budget.persist(make_session("a", 1))
        budget.persist(make_session("b", 3))
        budget.persist(make_session("c", 2))
        budget.active_session_id = "c"

        summaries = budget.list_sessions()

        check.equal([s.session_id for s in summaries], ["b", "c", "a"])
        check.equal([s.is_active for s in summaries], [False, True, False])
        check.equal(summaries[0].message_count, 1)
