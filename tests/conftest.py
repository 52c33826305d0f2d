"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - chat_config: Fast configuration with short timers
    - memory_area: In-memory storage area under the default budget
    - budget: Storage manager over memory_area
    - make_backend: Factory for a fake agent backend on httpx.MockTransport
    - make_coordinator: Factory wiring a coordinator to a fake backend

The fake backend streams the body in small chunks so records straddle
chunk boundaries the way they do over a real network.
"""

import asyncio
import json
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest

from src.chat.config import ChatConfig
from src.chat.coordinator import UploadCoordinator, build_coordinator
from src.storage.areas import MemoryArea
from src.storage.budget import StorageBudgetManager

STORAGE_LIMIT = 5 * 1024 * 1024


def sse_body(records: list[dict]) -> str:
    """Frame records the way the agent backend streams them."""
    return "".join(f"data: {json.dumps(record)}\n\n" for record in records)


def chunked(text: str, size: int) -> list[bytes]:
    raw = text.encode("utf-8")
    return [raw[i : i + size] for i in range(0, len(raw), size)]


class FakeBackend:
    """Agent backend double that records requests and streams a body.

    Attributes:
        requests: Every request received, body already read.
        client: AsyncClient routed to this backend.
    """

    def __init__(
        self,
        records: list[dict] | None = None,
        *,
        body: str | None = None,
        chunk_size: int = 7,
        delay: float = 0.0,
        hang_after: int | None = None,
        status_code: int = 200,
        error: Exception | None = None,
    ) -> None:
        self.body = body if body is not None else sse_body(records or [])
        self.chunk_size = chunk_size
        self.delay = delay
        self.hang_after = hang_after
        self.status_code = status_code
        self.error = error
        self.requests: list[httpx.Request] = []
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text=self.body)
        return httpx.Response(self.status_code, content=self._stream())

    async def _stream(self) -> AsyncGenerator[bytes]:
        for index, piece in enumerate(chunked(self.body, self.chunk_size)):
            if self.hang_after is not None and index == self.hang_after:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            yield piece


@pytest.fixture
def chat_config(tmp_path) -> ChatConfig:
    """Configuration with a fake backend URL and short timers."""
    return ChatConfig(
        api_base_url="http://agent.test/",
        agent_id="legal-chat",
        api_key=None,
        watchdog_mobile_seconds=0.5,
        watchdog_desktop_seconds=1.0,
        completion_grace_seconds=0.0,
        persist_debounce_seconds=0.01,
        storage_dir=tmp_path / "storage",
        storage_limit_bytes=STORAGE_LIMIT,
    )


@pytest.fixture
def memory_area() -> MemoryArea:
    return MemoryArea(quota_bytes=STORAGE_LIMIT)


@pytest.fixture
def budget(memory_area: MemoryArea, chat_config: ChatConfig) -> StorageBudgetManager:
    return StorageBudgetManager(memory_area, chat_config)


@pytest.fixture
async def make_backend() -> AsyncGenerator[Callable[..., FakeBackend]]:
    """Create fake backends and close their clients after the test.

    Yields:
        Factory taking FakeBackend arguments.
    """
    backends: list[FakeBackend] = []

    def factory(*args, **kwargs) -> FakeBackend:
        backend = FakeBackend(*args, **kwargs)
        backends.append(backend)
        return backend

    yield factory
    for backend in backends:
        await backend.client.aclose()


@pytest.fixture
def make_coordinator(
    chat_config: ChatConfig, memory_area: MemoryArea
) -> Callable[..., UploadCoordinator]:
    """Build coordinators over the shared memory area."""

    def factory(
        backend: FakeBackend, config: ChatConfig | None = None, area=None
    ) -> UploadCoordinator:
        return build_coordinator(
            config or chat_config,
            client=backend.client,
            area=area if area is not None else memory_area,
        )

    return factory
