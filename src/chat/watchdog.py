"""Client-side watchdog racing a streamed turn.

The threshold depends on the device class: mobile connections get a
shorter budget than desktop ones.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from enum import Enum

from src.chat.config import ChatConfig

logger = logging.getLogger(__name__)

_MOBILE_UA = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE
)


class DeviceClass(str, Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"


def detect_device_class(user_agent: str | None) -> DeviceClass:
    """Classify a client by its User-Agent header."""
    if user_agent and _MOBILE_UA.search(user_agent):
        return DeviceClass.MOBILE
    return DeviceClass.DESKTOP


def watchdog_threshold(config: ChatConfig, device_class: DeviceClass) -> float:
    if device_class is DeviceClass.MOBILE:
        return config.watchdog_mobile_seconds
    return config.watchdog_desktop_seconds


class Watchdog:
    """One-shot timer tagged with the generation it was armed for.

    The fire callback receives that generation; deciding whether it is
    still current is up to the callback.
    """

    def __init__(self, threshold: float) -> None:
        self.threshold = threshold
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, generation: int, on_fire: Callable[[int], None]) -> None:
        """Start the timer, replacing any previous one.

        Must be called from a running event loop.
        """
        self.disarm()
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._handle = None
            logger.warning(
                f"Watchdog fired after {self.threshold:.0f}s for generation {generation}"
            )
            on_fire(generation)

        self._handle = loop.call_later(self.threshold, fire)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
