"""Pytest configuration and fixtures for wa_gateway tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from wa_gateway.credentials import CredentialStore
from wa_gateway.engine import EngineEvent, EngineHandle, ProtocolEngine
from wa_gateway.session import SessionManager


class FakeHandle(EngineHandle):
    """Engine handle driven by the test through ``emit``."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[EngineEvent | None] = asyncio.Queue()
        self.send_mock = AsyncMock()
        self.logout_mock = AsyncMock()
        self.closed = False

    def emit(self, event: EngineEvent) -> None:
        self.queue.put_nowait(event)

    async def send(self, recipient: str, payload: dict[str, Any]) -> None:
        await self.send_mock(recipient, payload)

    async def logout(self) -> None:
        await self.logout_mock()

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(None)

    async def events(self) -> AsyncIterator[EngineEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class FakeEngine(ProtocolEngine):
    """Engine that hands out FakeHandles and records credentials."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.credentials_seen: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    @property
    def handle(self) -> FakeHandle:
        return self.handles[-1]

    async def connect(self, credentials: dict[str, Any]) -> FakeHandle:
        self.credentials_seen.append(credentials)
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeHandle()
        self.handles.append(handle)
        return handle


class MemoryCredentialStore(CredentialStore):
    """In-memory credential store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(initial or {})
        self.clear_count = 0

    def load(self) -> dict[str, Any]:
        return dict(self.data)

    def save(self, update: dict[str, Any]) -> None:
        self.data.update(update)

    def clear(self) -> None:
        self.data.clear()
        self.clear_count += 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore({"creds": {"me": "15550000000"}})


@pytest.fixture
async def manager(
    engine: FakeEngine, store: MemoryCredentialStore
) -> AsyncIterator[SessionManager]:
    """Session manager with a short reconnect delay."""
    session = SessionManager(engine, store, reconnect_delay=0.05)
    yield session
    await session.close()
