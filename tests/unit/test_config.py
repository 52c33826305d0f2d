"""Unit tests for chat configuration, generations and the watchdog."""

import asyncio

import pytest
import pytest_check as check
from pydantic import ValidationError

from src.chat.config import ChatConfig, get_chat_config
from src.chat.generation import GenerationCounter
from src.chat.watchdog import (
    DeviceClass,
    Watchdog,
    detect_device_class,
    watchdog_threshold,
)

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
ANDROID_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Chrome/120 Mobile"
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120 Safari/537.36"


class TestChatConfig:
    """Tests for environment loading and validation."""

    def test_defaults(self, monkeypatch) -> None:
        for key in [
            "CHAT_API_URL",
            "CHAT_AGENT_ID",
            "CHAT_API_KEY",
            "CHAT_WATCHDOG_MOBILE_SECONDS",
            "CHAT_WATCHDOG_DESKTOP_SECONDS",
            "CHAT_STORAGE_LIMIT_BYTES",
        ]:
            monkeypatch.delenv(key, raising=False)

        config = get_chat_config()

        check.equal(config.watchdog_mobile_seconds, 60)
        check.equal(config.watchdog_desktop_seconds, 120)
        check.equal(config.storage_limit_bytes, 5 * 1024 * 1024)
        check.equal(config.near_limit_percent, 80)
        check.equal(config.reclaim_target_percent, 60)
        check.equal(config.session_ttl_days, 7)
        check.equal(config.completion_grace_seconds, 1.0)
        check.is_none(config.api_key)

    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("CHAT_API_URL", "https://agents.example.com/")
        monkeypatch.setenv("CHAT_AGENT_ID", "tipidkor-chat")
        monkeypatch.setenv("CHAT_API_KEY", "  secret  ")
        monkeypatch.setenv("CHAT_WATCHDOG_MOBILE_SECONDS", "30")

        config = ChatConfig()

        check.equal(
            config.runs_url, "https://agents.example.com/v1/playground/agents/tipidkor-chat/runs"
        )
        check.equal(config.api_key, "secret")
        check.equal(config.watchdog_mobile_seconds, 30)

    def test_blank_api_key_is_none(self) -> None:
        check.is_none(ChatConfig(api_key="   ").api_key)

    def test_blank_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ChatConfig(api_base_url="  ")

    def test_mobile_watchdog_cannot_exceed_desktop(self) -> None:
        with pytest.raises(ValidationError):
            ChatConfig(watchdog_mobile_seconds=200, watchdog_desktop_seconds=100)

    def test_reclaim_target_below_near_limit(self) -> None:
        with pytest.raises(ValidationError):
            ChatConfig(near_limit_percent=60, reclaim_target_percent=70)

    def test_limits_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ChatConfig(storage_limit_bytes=0)


class TestGenerationCounter:
    def test_advance_invalidates_old_tokens(self) -> None:
        counter = GenerationCounter()
        first = counter.advance("chat")

        second = counter.advance("chat")

        check.is_false(counter.is_current("chat", first))
        check.is_true(counter.is_current("chat", second))
        check.greater(second, first)

    def test_keys_are_independent(self) -> None:
        counter = GenerationCounter()
        token = counter.advance("a")

        counter.advance("b")

        check.is_true(counter.is_current("a", token))
        check.equal(counter.current("untouched"), 0)


class TestDeviceClass:
    @pytest.mark.parametrize(
        ("user_agent", "expected"),
        [
            (IPHONE_UA, DeviceClass.MOBILE),
            (ANDROID_UA, DeviceClass.MOBILE),
            ("Opera/9.80 (J2ME/MIDP; Opera Mini/9.80)", DeviceClass.MOBILE),
            (DESKTOP_UA, DeviceClass.DESKTOP),
            (None, DeviceClass.DESKTOP),
            ("", DeviceClass.DESKTOP),
        ],
    )
    def test_detect(self, user_agent: str | None, expected: DeviceClass) -> None:
        check.equal(detect_device_class(user_agent), expected)

    def test_mobile_threshold_is_shorter(self, chat_config: ChatConfig) -> None:
        mobile = watchdog_threshold(chat_config, DeviceClass.MOBILE)
        desktop = watchdog_threshold(chat_config, DeviceClass.DESKTOP)

        check.less(mobile, desktop)


class TestWatchdog:
    async def test_fires_with_armed_generation(self) -> None:
        fired: list[int] = []
        watchdog = Watchdog(0.02)

        watchdog.arm(7, fired.append)
        await asyncio.sleep(0.08)

        check.equal(fired, [7])
        check.is_false(watchdog.armed)

    async def test_disarm_prevents_fire(self) -> None:
        fired: list[int] = []
        watchdog = Watchdog(0.02)

        watchdog.arm(1, fired.append)
        watchdog.disarm()
        await asyncio.sleep(0.08)

        check.equal(fired, [])

    async def test_rearm_replaces_previous_timer(self) -> None:
        fired: list[int] = []
        watchdog = Watchdog(0.02)

        watchdog.arm(1, fired.append)
        watchdog.arm(2, fired.append)
        await asyncio.sleep(0.08)

        check.equal(fired, [2])
