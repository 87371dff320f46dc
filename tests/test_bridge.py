"""Tests for the bridge-backed protocol engine."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from wa_gateway.engine import EngineEvent, EngineEventType
from wa_gateway.errors import (
    EngineConnectionError,
    EngineResponseError,
    EngineTimeout,
)
from wa_gateway.transport.bridge import BridgeEngine, BridgeHandle
from wa_gateway.transport.ws_client import BridgeWsMessage, BridgeWsMessageType


class FakeBridgeClient:
    """In-memory stand-in for BridgeWsClient."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue[BridgeWsMessage] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.on_send: Callable[[dict[str, Any]], None] | None = None
        self.send_error: Exception | None = None
        self.connect = AsyncMock()
        self.closed = False

    def push(self, frame: dict[str, Any]) -> None:
        self.push_raw(json.dumps(frame))

    def push_raw(self, raw: str) -> None:
        self.incoming.put_nowait(BridgeWsMessage(BridgeWsMessageType.TEXT, raw))

    def push_closed(self) -> None:
        self.incoming.put_nowait(BridgeWsMessage(BridgeWsMessageType.CLOSED))

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)
        if self.on_send is not None:
            self.on_send(payload)

    async def close(self) -> None:
        self.closed = True
        self.push_closed()

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            msg = await self.incoming.get()
            yield msg
            if msg.type is not BridgeWsMessageType.TEXT:
                return


async def collect(handle: BridgeHandle) -> list[EngineEvent]:
    async with asyncio.timeout(1.0):
        return [event async for event in handle.events()]


@pytest.fixture
def client() -> FakeBridgeClient:
    return FakeBridgeClient()


@pytest.fixture
async def handle(client: FakeBridgeClient) -> AsyncIterator[BridgeHandle]:
    bridge_handle = BridgeHandle(client, send_timeout=0.2)  # type: ignore[arg-type]
    bridge_handle.start_reader()
    yield bridge_handle
    await bridge_handle.close()


class TestBridgeHandleEvents:
    """Tests for inbound frame translation."""

    async def test_lifecycle_frames(self, client: FakeBridgeClient, handle: BridgeHandle):
        """Test bridge frames map to engine events and close ends the stream."""
        client.push({"type": "qr", "body": {"qr": "2@abc"}})
        client.push({"type": "creds", "body": {"creds": {"creds": {"me": "x"}}}})
        client.push({"type": "connection", "body": {"connection": "open"}})
        client.push(
            {"type": "connection", "body": {"connection": "close", "statusCode": 401}}
        )

        events = await collect(handle)

        assert events == [
            EngineEvent.pairing_challenge("2@abc"),
            EngineEvent.credentials_update({"creds": {"me": "x"}}),
            EngineEvent.open(),
            EngineEvent.close(401),
        ]

    async def test_socket_closed_becomes_recoverable_close(
        self, client: FakeBridgeClient, handle: BridgeHandle
    ):
        """Test a dropped socket yields CLOSE without a status code."""
        client.push({"type": "connection", "body": {"connection": "open"}})
        client.push_closed()

        events = await collect(handle)

        assert [e.type for e in events] == [EngineEventType.OPEN, EngineEventType.CLOSE]
        assert events[-1].status_code is None

    async def test_invalid_and_unknown_frames_skipped(
        self, client: FakeBridgeClient, handle: BridgeHandle
    ):
        """Test garbage and unknown frames do not end the session."""
        client.push_raw("not json")
        client.push({"type": "presence", "body": {}})
        client.push({"type": "error", "body": {"error": "rate limited"}})
        client.push({"type": "qr", "body": {"qr": ""}})
        client.push({"type": "connection", "body": {"connection": "open"}})
        client.push_closed()

        events = await collect(handle)

        assert [e.type for e in events] == [EngineEventType.OPEN, EngineEventType.CLOSE]

    async def test_close_ends_stream(self, client: FakeBridgeClient, handle: BridgeHandle):
        """Test closing the handle closes the socket and ends the stream."""
        await handle.close()

        events = await collect(handle)

        assert client.closed
        assert [e.type for e in events] == [EngineEventType.CLOSE]


class TestBridgeHandleRequests:
    """Tests for send/logout request handling."""

    async def test_send_acknowledged(self, client: FakeBridgeClient, handle: BridgeHandle):
        """Test send waits for the matching ack."""
        client.on_send = lambda frame: client.push(
            {"type": "ack", "id": frame["id"], "body": {"ok": True}}
        )

        await handle.send("15551234567@s.whatsapp.net", {"text": "hi"})

        assert client.sent[0]["type"] == "send"
        assert client.sent[0]["body"] == {
            "to": "15551234567@s.whatsapp.net",
            "content": {"text": "hi"},
        }

    async def test_send_rejected(self, client: FakeBridgeClient, handle: BridgeHandle):
        """Test a negative ack raises EngineResponseError."""
        client.on_send = lambda frame: client.push(
            {
                "type": "ack",
                "id": frame["id"],
                "body": {"ok": False, "status": 403, "error": "not on WhatsApp"},
            }
        )

        with pytest.raises(EngineResponseError, match="not on WhatsApp") as exc_info:
            await handle.send("15551234567@s.whatsapp.net", {"text": "hi"})

        assert exc_info.value.status == 403

    async def test_send_timeout(self, client: FakeBridgeClient, handle: BridgeHandle):
        """Test a missing ack times out."""
        with pytest.raises(EngineTimeout, match="Send request timed out"):
            await handle.send("15551234567@s.whatsapp.net", {"text": "hi"})

    async def test_send_fails_when_connection_drops(
        self, client: FakeBridgeClient, handle: BridgeHandle
    ):
        """Test pending requests fail when the socket closes."""
        client.on_send = lambda frame: client.push_closed()

        with pytest.raises(EngineConnectionError, match="closed"):
            await handle.send("15551234567@s.whatsapp.net", {"text": "hi"})

    async def test_send_after_close(self, client: FakeBridgeClient, handle: BridgeHandle):
        """Test requests on a finished handle fail immediately."""
        await handle.close()

        with pytest.raises(EngineConnectionError, match="closed"):
            await handle.send("15551234567@s.whatsapp.net", {"text": "hi"})

        assert client.sent == []

    async def test_logout_acknowledged(
        self, client: FakeBridgeClient, handle: BridgeHandle
    ):
        """Test logout waits for its ack."""
        client.on_send = lambda frame: client.push(
            {"type": "ack", "id": frame["id"], "body": {}}
        )

        await handle.logout()

        assert client.sent[0]["type"] == "logout"


class TestBridgeEngine:
    """Tests for BridgeEngine.connect()."""

    async def test_connect_sends_hello(self, client: FakeBridgeClient):
        """Test connect opens the socket and sends credentials."""
        engine = BridgeEngine(
            "ws://bridge:3001/ws", token="secret", connect_timeout=3.0
        )

        with patch("wa_gateway.transport.bridge.BridgeWsClient", return_value=client):
            handle = await engine.connect({"creds": {"me": "x"}})

        client.connect.assert_awaited_once_with(
            "ws://bridge:3001/ws", ping_interval=20, timeout=3.0
        )
        assert client.sent[0]["type"] == "hello"
        assert client.sent[0]["body"] == {
            "credentials": {"creds": {"me": "x"}},
            "token": "secret",
        }
        assert isinstance(handle, BridgeHandle)
        await handle.close()

    async def test_connect_hello_failure_closes_socket(
        self, client: FakeBridgeClient
    ):
        """Test a failed hello closes the socket and propagates."""
        client.send_error = EngineConnectionError("Bridge connection lost")
        engine = BridgeEngine("ws://bridge:3001/ws")

        with (
            patch("wa_gateway.transport.bridge.BridgeWsClient", return_value=client),
            pytest.raises(EngineConnectionError),
        ):
            await engine.connect({})

        assert client.closed
